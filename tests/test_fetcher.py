"""Tests for the artifact fetch-and-revoke manager."""

from __future__ import annotations

import asyncio
from typing import Dict, List, Tuple

import pytest

from cardioview.client import ArtifactRetrievalError, FetchedMedia
from cardioview.config import ARTIFACT_MODES, ArtifactSpec
from cardioview.fetcher import ArtifactFetchManager
from cardioview.status import AnalysisResult, StatusTracker

SEGMENTATION = ARTIFACT_MODES["segmentation"]
VIDEO = ARTIFACT_MODES["video"]
RESULT = AnalysisResult(ejection_fraction=55.3, problem="Reduced EF", cause="c", cure="d")


class StaticFetch:
    """Resolves immediately; kinds listed in ``fail`` return HTTP 500."""

    def __init__(self, payloads: Dict[str, FetchedMedia], fail: Tuple[str, ...] = ()):
        self.payloads = payloads
        self.fail = fail
        self.calls: List[str] = []

    async def __call__(self, spec: ArtifactSpec) -> FetchedMedia:
        self.calls.append(spec.kind)
        if spec.kind in self.fail:
            raise ArtifactRetrievalError(spec.kind, "HTTP 500", status_code=500)
        return self.payloads[spec.kind]


class GatedFetch:
    """Each call blocks on a future the test resolves by hand."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, asyncio.Future]] = []

    async def __call__(self, spec: ArtifactSpec) -> FetchedMedia:
        fut = asyncio.get_running_loop().create_future()
        self.calls.append((spec.kind, fut))
        return await fut


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


def _segmentation_payloads() -> Dict[str, FetchedMedia]:
    return {
        "mask": FetchedMedia(b"mask-bytes", "image/png"),
        "ecg": FetchedMedia(b"ecg-bytes", "image/png"),
    }


def test_complete_fetches_each_kind_once() -> None:
    async def main():
        tracker = StatusTracker()
        fetch = StaticFetch(_segmentation_payloads())
        manager = ArtifactFetchManager(tracker=tracker, specs=SEGMENTATION, fetch=fetch)

        tracker.start_processing()
        assert fetch.calls == []
        tracker.complete(RESULT)
        await manager.wait_idle()
        return manager, fetch

    manager, fetch = asyncio.run(main())
    assert sorted(fetch.calls) == ["ecg", "mask"]
    assert manager.handle("mask") is not None
    assert manager.handle("ecg") is not None
    data = manager.registry.resolve(manager.handle("mask").handle_id)[1]
    assert data == b"mask-bytes"


def test_create_and_revoke_balance_across_cycles() -> None:
    async def main():
        tracker = StatusTracker()
        manager = ArtifactFetchManager(
            tracker=tracker, specs=SEGMENTATION, fetch=StaticFetch(_segmentation_payloads())
        )
        for _ in range(4):
            tracker.start_processing()
            tracker.complete(RESULT)
            await manager.wait_idle()
        manager.close()
        return manager.registry

    registry = asyncio.run(main())
    assert registry.created == {"mask": 4, "ecg": 4}
    assert registry.revoked == registry.created
    assert registry.live_handles() == []


def test_processing_revokes_synchronously() -> None:
    async def main():
        tracker = StatusTracker()
        manager = ArtifactFetchManager(tracker=tracker, specs=VIDEO, fetch=StaticFetch({"video": FetchedMedia(b"v", "video/mp4")}))
        tracker.start_processing()
        tracker.complete(RESULT)
        await manager.wait_idle()
        assert manager.handle("video") is not None

        tracker.start_processing()
        # No await in between: the old handle is gone as part of the transition.
        assert manager.handle("video") is None
        assert manager.registry.revoked["video"] == 1
        assert manager.registry.live_handles() == []

    asyncio.run(main())


def test_reset_to_idle_revokes() -> None:
    async def main():
        tracker = StatusTracker()
        manager = ArtifactFetchManager(tracker=tracker, specs=VIDEO, fetch=StaticFetch({"video": FetchedMedia(b"v", "video/mp4")}))
        tracker.start_processing()
        tracker.complete(RESULT)
        await manager.wait_idle()
        tracker.reset()
        return manager

    manager = asyncio.run(main())
    assert manager.handle("video") is None
    assert manager.registry.revoked == manager.registry.created


def test_stale_generation_response_is_discarded() -> None:
    async def main():
        tracker = StatusTracker()
        fetch = GatedFetch()
        manager = ArtifactFetchManager(tracker=tracker, specs=VIDEO, fetch=fetch)

        # Cycle A starts fetching but has not resolved yet.
        tracker.start_processing()
        tracker.complete(RESULT)
        await _settle()
        gen_a = manager.generation

        # Cycle B supersedes it.
        tracker.start_processing()
        tracker.complete(RESULT)
        await _settle()
        assert manager.generation > gen_a
        assert [kind for kind, _ in fetch.calls] == ["video", "video"]
        (_, fut_a), (_, fut_b) = fetch.calls

        fut_b.set_result(FetchedMedia(b"B", "video/mp4"))
        await _settle()
        fut_a.set_result(FetchedMedia(b"A", "video/mp4"))
        await manager.wait_idle()
        return manager

    manager = asyncio.run(main())
    handle = manager.handle("video")
    assert handle is not None
    assert manager.registry.resolve(handle.handle_id)[1] == b"B"
    assert manager.registry.created["video"] == 1
    assert manager.registry.revoked["video"] == 0


def test_stale_failure_does_not_mark_current_cycle() -> None:
    async def main():
        tracker = StatusTracker()
        fetch = GatedFetch()
        manager = ArtifactFetchManager(tracker=tracker, specs=VIDEO, fetch=fetch)
        tracker.start_processing()
        tracker.complete(RESULT)
        await _settle()
        tracker.start_processing()
        fetch.calls[0][1].set_exception(ArtifactRetrievalError("video", "HTTP 502", status_code=502))
        await manager.wait_idle()
        return manager

    manager = asyncio.run(main())
    assert not manager.has_failed("video")
    assert manager.handle("video") is None


def test_partial_failure_keeps_sibling() -> None:
    errors = []

    async def main():
        tracker = StatusTracker()
        manager = ArtifactFetchManager(
            tracker=tracker,
            specs=SEGMENTATION,
            fetch=StaticFetch(_segmentation_payloads(), fail=("ecg",)),
            on_error=lambda kind, exc: errors.append((kind, exc)),
        )
        tracker.start_processing()
        tracker.complete(RESULT)
        await manager.wait_idle()
        return manager

    manager = asyncio.run(main())
    assert manager.handle("mask") is not None
    assert manager.handle("ecg") is None
    assert manager.has_failed("ecg")
    assert not manager.has_failed("mask")
    assert [kind for kind, _ in errors] == ["ecg"]
    assert isinstance(errors[0][1], ArtifactRetrievalError)


def test_pending_tracks_in_flight_kinds() -> None:
    async def main():
        tracker = StatusTracker()
        fetch = GatedFetch()
        manager = ArtifactFetchManager(tracker=tracker, specs=SEGMENTATION, fetch=fetch)
        tracker.start_processing()
        tracker.complete(RESULT)
        await _settle()
        assert manager.is_pending("mask") and manager.is_pending("ecg")

        for kind, fut in fetch.calls:
            if kind == "mask":
                fut.set_result(FetchedMedia(b"m", "image/png"))
        await _settle()
        assert not manager.is_pending("mask")
        assert manager.is_pending("ecg")

        for kind, fut in fetch.calls:
            if kind == "ecg":
                fut.set_result(FetchedMedia(b"e", "image/png"))
        await manager.wait_idle()
        assert not manager.is_pending("ecg")

    asyncio.run(main())


def test_close_revokes_once_and_drops_late_responses() -> None:
    async def main():
        tracker = StatusTracker()
        fetch = GatedFetch()
        manager = ArtifactFetchManager(tracker=tracker, specs=SEGMENTATION, fetch=fetch)
        tracker.start_processing()
        tracker.complete(RESULT)
        await _settle()

        # mask arrives, ecg still in flight when the view goes away
        mask_fut = next(f for k, f in fetch.calls if k == "mask")
        ecg_fut = next(f for k, f in fetch.calls if k == "ecg")
        mask_fut.set_result(FetchedMedia(b"m", "image/png"))
        await _settle()

        manager.close()
        manager.close()
        ecg_fut.set_result(FetchedMedia(b"e", "image/png"))
        await manager.wait_idle()

        # the tracker is no longer observed
        tracker.start_processing()
        return manager

    manager = asyncio.run(main())
    assert manager.closed
    assert manager.registry.created == {"mask": 1}
    assert manager.registry.revoked == {"mask": 1}
    assert manager.registry.live_handles() == []


def test_change_listener_called_on_transitions_and_results() -> None:
    async def main():
        tracker = StatusTracker()
        manager = ArtifactFetchManager(tracker=tracker, specs=VIDEO, fetch=StaticFetch({"video": FetchedMedia(b"v", "video/mp4")}))
        changes = []
        manager.subscribe_changes(lambda: changes.append(manager.handle("video")))
        tracker.start_processing()
        tracker.complete(RESULT)
        await manager.wait_idle()
        return changes

    changes = asyncio.run(main())
    assert changes[0] is None
    assert changes[-1] is not None


def test_complete_outside_event_loop_leaves_state_untouched() -> None:
    tracker = StatusTracker()
    fetch = StaticFetch({})
    manager = ArtifactFetchManager(tracker=tracker, specs=VIDEO, fetch=fetch)
    tracker.start_processing()
    generation = manager.generation

    with pytest.raises(RuntimeError):
        tracker.complete(RESULT)

    assert tracker.status.is_processing
    assert manager.generation == generation
    assert fetch.calls == []
    assert not manager.has_failed("video")

