"""Result view: input video next to the derived artifacts.

Composes the status tracker, the fetch manager and the playback synchronizer
and renders the current state into a :class:`ViewModel`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .client import ArtifactClient
from .config import ViewerConfig
from .fetcher import ArtifactFetchManager, ErrorSink, FetchFn
from .media import MediaHandle, MediaRegistry
from .player import PlaybackRejectedError, PlayerElement
from .presentation import CardiacMetrics, DiagnosisSection
from .status import StatusTracker
from .sync import PlaybackSynchronizer

logger = logging.getLogger(__name__)

IDLE_PROMPT = 'Click "Process Video" to start'


class CellState(str, Enum):
    LOADING = "loading"
    MEDIA = "media"
    IDLE = "idle"


@dataclass(frozen=True)
class ArtifactCell:
    kind: str
    label: str
    state: CellState
    handle: Optional[MediaHandle] = None
    failed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "label": self.label,
            "state": self.state.value,
            "media": self.handle.to_dict() if self.handle is not None else None,
            "failed": self.failed,
            "prompt": IDLE_PROMPT if self.state == CellState.IDLE else None,
        }


@dataclass(frozen=True)
class ViewModel:
    order: int
    status: str
    input_src: Optional[str]
    cells: List[ArtifactCell] = field(default_factory=list)
    metrics: Optional[CardiacMetrics] = None
    diagnosis: Optional[DiagnosisSection] = None

    def cell(self, kind: str) -> ArtifactCell:
        for c in self.cells:
            if c.kind == kind:
                return c
        raise KeyError(kind)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order": self.order,
            "status": self.status,
            "input_src": self.input_src,
            "cells": [c.to_dict() for c in self.cells],
            "metrics": self.metrics.to_dict() if self.metrics is not None else None,
            "diagnosis": self.diagnosis.to_dict() if self.diagnosis is not None else None,
        }


class ResultView:
    def __init__(
        self,
        *,
        tracker: StatusTracker,
        manager: ArtifactFetchManager,
        synchronizer: Optional[PlaybackSynchronizer] = None,
        input_src: Optional[str] = None,
        client: Optional[ArtifactClient] = None,
    ) -> None:
        self.tracker = tracker
        self.client = client
        self.manager = manager
        self.synchronizer = synchronizer or PlaybackSynchronizer()
        self.primary = PlayerElement(input_src, name="input")
        self._players: Dict[str, PlayerElement] = {}
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def mounted(self) -> bool:
        return self._unsubscribe is not None

    @property
    def players(self) -> Dict[str, PlayerElement]:
        """Players for derived artifacts that are videos, keyed by kind."""
        return dict(self._players)

    def mount(self) -> None:
        if self.mounted:
            return
        if self.manager.closed:
            raise RuntimeError("cannot mount a view whose fetch manager was closed")
        self._unsubscribe = self.manager.subscribe_changes(self._resync)
        self._resync()

    def unmount(self) -> None:
        unsubscribe = self._unsubscribe
        if unsubscribe is None:
            return
        self.synchronizer.detach()
        unsubscribe()
        self._unsubscribe = None
        self._players = {}
        self.manager.close()
        logger.debug("view unmounted; handles revoked")

    async def shutdown(self) -> None:
        """Unmount, let in-flight retrievals settle, then release the HTTP client."""
        self.unmount()
        await self.manager.wait_idle()
        if self.client is not None:
            self.client.close()
            self.client = None

    def set_input(self, src: Optional[str]) -> None:
        self.primary.src = src
        self.primary.current_time = 0.0
        self.primary.paused = True
        self._resync()

    def _resync(self) -> None:
        # Rebuild the sync group from the handles that are live right now.
        players: Dict[str, PlayerElement] = {}
        for kind, handle in self.manager.handles().items():
            if handle is None or not handle.is_video:
                continue
            existing = self._players.get(kind)
            if existing is not None and existing.src == handle.url:
                players[kind] = existing
            else:
                players[kind] = self._join_playback(PlayerElement(handle.url, name=kind))
        self._players = players
        if self.mounted:
            self.synchronizer.attach(self.primary, list(players.values()))
        else:
            self.synchronizer.detach()

    def _join_playback(self, player: PlayerElement) -> PlayerElement:
        # A player created while the input is running starts at its position.
        if self.primary.paused or not self.primary.src:
            return player
        player.seek(self.primary.current_time)
        try:
            player.play()
        except PlaybackRejectedError as e:
            logger.warning("%s could not start playback: %s", player.name or "player", e)
        return player

    def render(self) -> ViewModel:
        status = self.tracker.status
        cells = []
        for spec in self.manager.specs:
            handle = self.manager.handle(spec.kind)
            if status.is_processing or self.manager.is_pending(spec.kind):
                state = CellState.LOADING
            elif handle is not None:
                state = CellState.MEDIA
            else:
                state = CellState.IDLE
            cells.append(
                ArtifactCell(
                    kind=spec.kind,
                    label=spec.label or spec.kind,
                    state=state,
                    handle=handle if state == CellState.MEDIA else None,
                    failed=self.manager.has_failed(spec.kind),
                )
            )

        metrics = None
        diagnosis = None
        if status.is_complete and status.result is not None:
            metrics = CardiacMetrics(ejection_fraction=status.result.ejection_fraction)
            diagnosis = DiagnosisSection.from_result(status.result)

        return ViewModel(
            order=self.tracker.order,
            status=status.state.value,
            input_src=self.primary.src,
            cells=cells,
            metrics=metrics,
            diagnosis=diagnosis,
        )


def build_view(
    config: ViewerConfig,
    *,
    fetch: Optional[FetchFn] = None,
    registry: Optional[MediaRegistry] = None,
    on_error: Optional[ErrorSink] = None,
) -> ResultView:
    """Wire a mounted-ready view from configuration.

    ``fetch`` defaults to an :class:`ArtifactClient` against the configured
    endpoint.
    """
    client = None
    if fetch is None:
        client = ArtifactClient(config.base_url, timeout_s=config.timeout_s)
        fetch = client.fetch_async
    tracker = StatusTracker()
    manager = ArtifactFetchManager(
        tracker=tracker,
        specs=config.artifact_specs(),
        fetch=fetch,
        registry=registry,
        on_error=on_error,
    )
    return ResultView(
        tracker=tracker,
        manager=manager,
        synchronizer=PlaybackSynchronizer(tolerance_s=config.sync_tolerance_s),
        client=client,
    )
