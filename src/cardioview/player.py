"""Headless video element model.

Holds the playback state the browser reports for one ``<video>`` element and
lets observers subscribe to its ``play``, ``pause`` and ``timeupdate`` events.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Dict, List, Optional


class PlayerEvent(str, Enum):
    PLAY = "play"
    PAUSE = "pause"
    TIMEUPDATE = "timeupdate"


class PlaybackRejectedError(Exception):
    """Raised when an element refuses to start playback (no source, autoplay policy)."""


PlayerListener = Callable[["PlayerElement"], None]


class PlayerElement:
    def __init__(
        self,
        src: Optional[str],
        *,
        name: str = "",
        muted: bool = True,
        loop: bool = True,
        duration_s: Optional[float] = None,
    ) -> None:
        self.name = name
        self.src = src
        self.muted = muted
        self.loop = loop
        self.duration_s = duration_s
        self.current_time = 0.0
        self.paused = True
        self._listeners: Dict[PlayerEvent, List[PlayerListener]] = {e: [] for e in PlayerEvent}

    def on(self, event: PlayerEvent, listener: PlayerListener) -> Callable[[], None]:
        listeners = self._listeners[PlayerEvent(event)]
        listeners.append(listener)

        def off() -> None:
            if listener in listeners:
                listeners.remove(listener)

        return off

    def listener_count(self, event: Optional[PlayerEvent] = None) -> int:
        if event is not None:
            return len(self._listeners[PlayerEvent(event)])
        return sum(len(v) for v in self._listeners.values())

    def play(self) -> None:
        if not self.src:
            raise PlaybackRejectedError(f"{self.name or 'player'}: no media source")
        if not self.paused:
            return
        self.paused = False
        self._emit(PlayerEvent.PLAY)

    def pause(self) -> None:
        if self.paused:
            return
        self.paused = True
        self._emit(PlayerEvent.PAUSE)

    def seek(self, position_s: float) -> None:
        position_s = max(0.0, float(position_s))
        if self.duration_s is not None:
            position_s = min(position_s, self.duration_s)
        self.current_time = position_s
        self._emit(PlayerEvent.TIMEUPDATE)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "src": self.src,
            "current_time": round(self.current_time, 3),
            "paused": self.paused,
            "muted": self.muted,
            "loop": self.loop,
        }

    def _emit(self, event: PlayerEvent) -> None:
        for listener in list(self._listeners[event]):
            listener(self)
