"""HTTP client for the cardiac analysis backend.

Retrieves derived media (processed video, mask, ECG) with plain GET requests.
The blocking call runs in a worker thread when used from the event loop.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import requests

from .config import ArtifactSpec

logger = logging.getLogger(__name__)

ACCEPT_MEDIA = "video/*, image/*;q=0.9, */*;q=0.5"


@dataclass(frozen=True)
class FetchedMedia:
    data: bytes
    media_type: str


class ArtifactClientError(Exception):
    """Base exception for artifact client errors."""
    pass


class ArtifactRetrievalError(ArtifactClientError):
    """Raised when an artifact request fails or returns a non-2xx status."""

    def __init__(self, kind: str, message: str, *, status_code: Optional[int] = None):
        super().__init__(f"{kind}: {message}")
        self.kind = kind
        self.status_code = status_code


def _media_type(resp: requests.Response) -> str:
    value = resp.headers.get("Content-Type") or ""
    value = value.split(";", 1)[0].strip().lower()
    return value or "application/octet-stream"


class ArtifactClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._session = session or requests.Session()

    def url_for(self, spec: ArtifactSpec) -> str:
        path = spec.path if spec.path.startswith("/") else f"/{spec.path}"
        return f"{self.base_url}{path}"

    def fetch(self, spec: ArtifactSpec) -> FetchedMedia:
        url = self.url_for(spec)
        try:
            resp = self._session.get(url, headers={"Accept": ACCEPT_MEDIA}, timeout=self.timeout_s)
        except requests.RequestException as e:
            raise ArtifactRetrievalError(spec.kind, f"request to {url} failed: {e}") from e

        if not resp.ok:
            raise ArtifactRetrievalError(
                spec.kind,
                f"GET {url} returned HTTP {resp.status_code}",
                status_code=resp.status_code,
            )

        media = FetchedMedia(data=resp.content, media_type=_media_type(resp))
        logger.debug("fetched %s from %s (%s, %d bytes)", spec.kind, url, media.media_type, len(media.data))
        return media

    async def fetch_async(self, spec: ArtifactSpec) -> FetchedMedia:
        return await asyncio.to_thread(self.fetch, spec)

    def close(self) -> None:
        self._session.close()
