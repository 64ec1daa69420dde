"""In-memory media handles.

A :class:`MediaHandle` stands in for a fetched binary payload the way a
``blob:`` object URL does in a browser: it is created from bytes, can be
dereferenced while live, and must be revoked exactly once to free the bytes.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

logger = logging.getLogger(__name__)

URL_SCHEME = "blob:cardioview/"


class HandleRevokedError(Exception):
    """Raised when a handle is dereferenced or revoked after revocation."""


@dataclass(frozen=True)
class MediaHandle:
    handle_id: str
    kind: str
    media_type: str
    size: int

    @property
    def url(self) -> str:
        return f"{URL_SCHEME}{self.handle_id}"

    @property
    def is_video(self) -> bool:
        return self.media_type.startswith("video/")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.handle_id,
            "url": self.url,
            "kind": self.kind,
            "media_type": self.media_type,
            "size": self.size,
        }


class MediaRegistry:
    """Owns the bytes behind every live handle and counts create/revoke calls."""

    def __init__(self) -> None:
        self._blobs: Dict[str, Tuple[MediaHandle, bytes]] = {}
        self.created: Counter[str] = Counter()
        self.revoked: Counter[str] = Counter()

    def create(self, kind: str, data: bytes, media_type: str) -> MediaHandle:
        handle = MediaHandle(
            handle_id=uuid.uuid4().hex,
            kind=kind,
            media_type=media_type or "application/octet-stream",
            size=len(data),
        )
        self._blobs[handle.handle_id] = (handle, bytes(data))
        self.created[kind] += 1
        logger.debug("created %s handle %s (%d bytes)", kind, handle.handle_id, handle.size)
        return handle

    def revoke(self, handle: MediaHandle) -> None:
        if self._blobs.pop(handle.handle_id, None) is None:
            raise HandleRevokedError(f"handle already revoked: {handle.url}")
        self.revoked[handle.kind] += 1
        logger.debug("revoked %s handle %s", handle.kind, handle.handle_id)

    def resolve(self, handle_id: str) -> Tuple[MediaHandle, bytes]:
        try:
            return self._blobs[handle_id]
        except KeyError:
            raise HandleRevokedError(f"no live handle: {URL_SCHEME}{handle_id}") from None

    def is_live(self, handle: MediaHandle) -> bool:
        return handle.handle_id in self._blobs

    def live_handles(self) -> List[MediaHandle]:
        return [handle for handle, _ in self._blobs.values()]

    @property
    def live_bytes(self) -> int:
        return sum(h.size for h in self.live_handles())
