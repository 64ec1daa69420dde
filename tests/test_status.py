import pytest

from cardioview.status import (
    AnalysisResult,
    InvalidTransitionError,
    ProcessingState,
    ProcessingStatus,
    StatusTracker,
)

RESULT = AnalysisResult(ejection_fraction=55.3, problem="Reduced EF", cause="cause", cure="cure")


def test_starts_idle() -> None:
    tracker = StatusTracker(order=3)
    assert tracker.status.is_idle
    assert tracker.order == 3


def test_full_cycle_publishes_transitions() -> None:
    tracker = StatusTracker()
    seen = []
    tracker.subscribe(lambda ev: seen.append((ev.previous.state, ev.current.state)))

    tracker.start_processing()
    tracker.complete(RESULT)
    tracker.start_processing()

    assert seen == [
        (ProcessingState.IDLE, ProcessingState.PROCESSING),
        (ProcessingState.PROCESSING, ProcessingState.COMPLETE),
        (ProcessingState.COMPLETE, ProcessingState.PROCESSING),
    ]


def test_complete_carries_result() -> None:
    tracker = StatusTracker()
    tracker.start_processing()
    tracker.complete(RESULT)
    assert tracker.status.is_complete
    assert tracker.status.result == RESULT


def test_idle_to_complete_rejected() -> None:
    tracker = StatusTracker()
    with pytest.raises(InvalidTransitionError):
        tracker.complete(RESULT)
    assert tracker.status.is_idle


def test_complete_twice_rejected() -> None:
    tracker = StatusTracker()
    tracker.start_processing()
    tracker.complete(RESULT)
    with pytest.raises(InvalidTransitionError):
        tracker.complete(RESULT)


def test_order_passed_through() -> None:
    tracker = StatusTracker()
    orders = []
    tracker.subscribe(lambda ev: orders.append(ev.order))
    tracker.start_processing(order=7)
    assert tracker.order == 7
    assert orders == [7]


def test_reset_from_idle_is_silent() -> None:
    tracker = StatusTracker()
    seen = []
    tracker.subscribe(seen.append)
    tracker.reset()
    assert seen == []


def test_unsubscribe_stops_delivery() -> None:
    tracker = StatusTracker()
    seen = []
    unsubscribe = tracker.subscribe(seen.append)
    unsubscribe()
    unsubscribe()
    tracker.start_processing()
    assert seen == []


def test_status_requires_result_only_when_complete() -> None:
    with pytest.raises(ValueError):
        ProcessingStatus(ProcessingState.COMPLETE)
    with pytest.raises(ValueError):
        ProcessingStatus(ProcessingState.PROCESSING, RESULT)


class TestAnalysisResult:
    def test_from_wire_payload(self):
        result = AnalysisResult.from_dict(
            {"ejectionFraction": "55.3", "problem": "Reduced EF", "cause": "c", "cure": "d"}
        )
        assert result.ejection_fraction == pytest.approx(55.3)
        assert result.problem == "Reduced EF"

    def test_snake_case_accepted(self):
        result = AnalysisResult.from_dict({"ejection_fraction": 60})
        assert result.ejection_fraction == 60.0
        assert result.cause == ""

    def test_missing_or_bad_ef(self):
        with pytest.raises(ValueError):
            AnalysisResult.from_dict({"problem": "x"})
        with pytest.raises(ValueError):
            AnalysisResult.from_dict({"ejectionFraction": "high"})

    def test_to_dict_uses_wire_keys(self):
        assert RESULT.to_dict()["ejectionFraction"] == 55.3


def test_listener_error_rolls_back_status() -> None:
    tracker = StatusTracker()

    def broken(event):
        raise RuntimeError("listener failed")

    tracker.subscribe(broken)
    with pytest.raises(RuntimeError):
        tracker.start_processing()
    assert tracker.status.is_idle
