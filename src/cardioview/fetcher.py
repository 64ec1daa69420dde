"""Fetch derived media when an analysis completes, and release it again.

:class:`ArtifactFetchManager` listens to a :class:`~cardioview.status.StatusTracker`.
Entering ``processing`` (or ``idle``) revokes every live handle right away so
stale media is never shown during a new run. Entering ``complete`` starts one
retrieval per configured artifact kind on the running event loop.

Every transition bumps a generation counter. A retrieval remembers the
generation it was started under and its result is dropped if the counter has
moved on by the time the response arrives, so a slow response from a
superseded run can never overwrite a newer handle.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set

from .client import FetchedMedia
from .config import ArtifactSpec
from .media import MediaHandle, MediaRegistry
from .status import StatusTracker, StatusTransition

logger = logging.getLogger(__name__)

FetchFn = Callable[[ArtifactSpec], Awaitable[FetchedMedia]]
ErrorSink = Callable[[str, Exception], None]
ChangeListener = Callable[[], None]


class ArtifactFetchManager:
    """Owns the media handles of one result view."""

    def __init__(
        self,
        *,
        tracker: StatusTracker,
        specs: Sequence[ArtifactSpec],
        fetch: FetchFn,
        registry: Optional[MediaRegistry] = None,
        on_error: Optional[ErrorSink] = None,
    ) -> None:
        self.specs: List[ArtifactSpec] = list(specs)
        self.registry = registry or MediaRegistry()
        self._fetch = fetch
        self._on_error = on_error

        self._slots: Dict[str, Optional[MediaHandle]] = {s.kind: None for s in self.specs}
        self._pending: Set[str] = set()
        self._failed: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: List[ChangeListener] = []
        self._generation = 0
        self._closed = False

        self._unsubscribe = tracker.subscribe(self._on_transition)

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def closed(self) -> bool:
        return self._closed

    def handle(self, kind: str) -> Optional[MediaHandle]:
        return self._slots.get(kind)

    def handles(self) -> Dict[str, Optional[MediaHandle]]:
        return dict(self._slots)

    def is_pending(self, kind: str) -> bool:
        return kind in self._pending

    def has_failed(self, kind: str) -> bool:
        return kind in self._failed

    def subscribe_changes(self, listener: ChangeListener) -> Callable[[], None]:
        """Call ``listener`` whenever the handle set changes."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def close(self) -> None:
        """Tear down: revoke every live handle and ignore any in-flight response."""
        if self._closed:
            return
        self._closed = True
        self._generation += 1
        self._unsubscribe()
        self._revoke_all()
        self._notify()

    async def wait_idle(self) -> None:
        """Wait until no retrieval (current or stale) is in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_transition(self, event: StatusTransition) -> None:
        # Retrievals need a running loop; raise before touching any state.
        loop = asyncio.get_running_loop() if event.current.is_complete else None
        self._generation += 1
        self._revoke_all()
        if loop is not None:
            self._start_batch(loop, self._generation)
        self._notify()

    def _start_batch(self, loop: asyncio.AbstractEventLoop, generation: int) -> None:
        for spec in self.specs:
            self._pending.add(spec.kind)
            task = loop.create_task(self._retrieve(spec, generation))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        logger.info("generation %d: fetching %s", generation, ", ".join(s.kind for s in self.specs))

    async def _retrieve(self, spec: ArtifactSpec, generation: int) -> None:
        try:
            media = await self._fetch(spec)
        except Exception as e:
            if generation != self._generation:
                logger.debug("ignoring %s failure from superseded generation %d", spec.kind, generation)
                return
            self._pending.discard(spec.kind)
            self._failed.add(spec.kind)
            logger.error("failed to fetch %s artifact: %s", spec.kind, e)
            if self._on_error is not None:
                self._on_error(spec.kind, e)
            self._notify()
            return

        if generation != self._generation:
            logger.debug(
                "discarding stale %s response (generation %d, current %d)",
                spec.kind,
                generation,
                self._generation,
            )
            return

        self._pending.discard(spec.kind)
        self._replace(spec.kind, media)
        self._notify()

    def _replace(self, kind: str, media: FetchedMedia) -> None:
        prior = self._slots.get(kind)
        if prior is not None:
            self._slots[kind] = None
            self.registry.revoke(prior)
        self._slots[kind] = self.registry.create(kind, media.data, media.media_type)

    def _revoke_all(self) -> None:
        # Null each slot before revoking so a handle can never be revoked twice.
        for kind, handle in self._slots.items():
            if handle is not None:
                self._slots[kind] = None
                self.registry.revoke(handle)
        self._pending.clear()
        self._failed.clear()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()
