"""Mirror playback of the input video onto derived videos.

The primary element drives; secondaries follow. :func:`plan_commands` turns a
primary event into commands and has no side effects, :class:`PlaybackSynchronizer`
wires it to live elements.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence

from .config import SYNC_TOLERANCE_S
from .player import PlaybackRejectedError, PlayerElement, PlayerEvent

logger = logging.getLogger(__name__)


class SyncAction(str, Enum):
    PLAY = "play"
    PAUSE = "pause"
    SEEK = "seek"


@dataclass(frozen=True)
class SyncCommand:
    target: int  # index into the secondary list
    action: SyncAction
    position_s: Optional[float] = None


def plan_commands(
    event: PlayerEvent,
    primary_position_s: float,
    secondary_positions_s: Sequence[float],
    tolerance_s: float = SYNC_TOLERANCE_S,
) -> List[SyncCommand]:
    event = PlayerEvent(event)
    if event == PlayerEvent.PLAY:
        return [SyncCommand(i, SyncAction.PLAY) for i in range(len(secondary_positions_s))]
    if event == PlayerEvent.PAUSE:
        return [SyncCommand(i, SyncAction.PAUSE) for i in range(len(secondary_positions_s))]

    cmds: List[SyncCommand] = []
    for i, pos in enumerate(secondary_positions_s):
        if abs(primary_position_s - pos) > tolerance_s:
            cmds.append(SyncCommand(i, SyncAction.SEEK, primary_position_s))
    return cmds


class PlaybackSynchronizer:
    def __init__(self, *, tolerance_s: float = SYNC_TOLERANCE_S) -> None:
        self.tolerance_s = tolerance_s
        self._primary: Optional[PlayerElement] = None
        self._secondaries: List[PlayerElement] = []
        self._unsubscribers: List[Callable[[], None]] = []

    @property
    def active(self) -> bool:
        return self._primary is not None

    @property
    def secondaries(self) -> List[PlayerElement]:
        return list(self._secondaries)

    def attach(self, primary: PlayerElement, secondaries: Sequence[PlayerElement]) -> bool:
        """Start mirroring ``primary`` onto ``secondaries``.

        Any previous attachment is dropped first. Nothing is attached unless
        the primary and at least one secondary have a media source. Returns
        whether listeners were attached.
        """
        self.detach()
        live = [s for s in secondaries if s.src]
        if not primary.src or not live:
            return False

        for s in live:
            s.muted = True
            s.loop = True

        self._primary = primary
        self._secondaries = live
        self._unsubscribers = [
            primary.on(PlayerEvent.PLAY, self._on_primary_event(PlayerEvent.PLAY)),
            primary.on(PlayerEvent.PAUSE, self._on_primary_event(PlayerEvent.PAUSE)),
            primary.on(PlayerEvent.TIMEUPDATE, self._on_primary_event(PlayerEvent.TIMEUPDATE)),
        ]
        logger.debug("sync attached: %s -> %s", primary.name, [s.name for s in live])
        return True

    def detach(self) -> None:
        for off in self._unsubscribers:
            off()
        self._unsubscribers = []
        self._primary = None
        self._secondaries = []

    def _on_primary_event(self, event: PlayerEvent) -> Callable[[PlayerElement], None]:
        def handler(primary: PlayerElement) -> None:
            self.apply(event, primary.current_time)

        return handler

    def apply(self, event: PlayerEvent, primary_position_s: float) -> List[SyncCommand]:
        secondaries = self._secondaries
        cmds = plan_commands(
            event,
            primary_position_s,
            [s.current_time for s in secondaries],
            self.tolerance_s,
        )
        for cmd in cmds:
            element = secondaries[cmd.target]
            if cmd.action == SyncAction.PLAY:
                try:
                    element.play()
                except PlaybackRejectedError as e:
                    logger.warning("secondary refused to play: %s", e)
            elif cmd.action == SyncAction.PAUSE:
                element.pause()
            elif cmd.position_s is not None:
                element.seek(cmd.position_s)
        return cmds
