import pytest

from yt_transcripts.progress import (
    ETA_UNKNOWN,
    PHASE_DOWNLOAD,
    PHASE_TRANSCRIBE,
    PHASE_UPLOAD,
    PhaseNotFound,
    PhaseRegistry,
    estimate_eta,
    estimate_remaining_ms,
    format_bytes,
    format_time,
    overall_percent,
    start_phase,
    update_phase,
)
from yt_transcripts.types import ProgressState


def test_registry_lookup() -> None:
    registry = PhaseRegistry([("a", 1), ("b", 3)])
    assert registry.index_of("b") == 1
    assert registry.total_weight == 4
    assert "a" in registry
    with pytest.raises(PhaseNotFound):
        registry.index_of("missing")


def test_registry_rejects_duplicates_and_bad_weights() -> None:
    with pytest.raises(ValueError):
        PhaseRegistry([("a", 1), ("a", 2)])
    with pytest.raises(ValueError):
        PhaseRegistry([("a", 0)])
    with pytest.raises(ValueError):
        PhaseRegistry([])


@pytest.mark.parametrize("weight", [float("nan"), float("inf"), -1.0])
def test_registry_rejects_non_finite_weights(weight: float) -> None:
    with pytest.raises(ValueError, match="positive finite"):
        PhaseRegistry([("a", weight), ("b", 1)])


def test_default_registry_has_pipeline_phases() -> None:
    registry = PhaseRegistry.default()
    assert [phase.name for phase in registry.phases][:3] == [PHASE_DOWNLOAD, PHASE_UPLOAD, PHASE_TRANSCRIBE]
    assert registry.total_weight == 100


def test_no_phase_started_is_zero() -> None:
    registry = PhaseRegistry([("only", 1)])
    assert overall_percent(registry, ProgressState()) == 0.0


def test_single_phase_half_done() -> None:
    registry = PhaseRegistry([("only", 1)])
    state = ProgressState(active_phase_index=0, in_phase_percent=50)
    assert overall_percent(registry, state) == 50


def test_first_of_two_equal_phases_completed() -> None:
    registry = PhaseRegistry([("first", 1), ("second", 1)])
    state = start_phase(registry, ProgressState(), "first")
    state = update_phase(state, 100)
    assert overall_percent(registry, state) == 50
    state = start_phase(registry, state, "second")
    assert overall_percent(registry, state) == 50


def test_weights_are_normalized() -> None:
    registry = PhaseRegistry([("a", 30), ("b", 20), ("c", 50)])
    state = ProgressState(active_phase_index=1, in_phase_percent=50)
    assert overall_percent(registry, state) == pytest.approx(40.0)


def test_overall_is_bounded_and_non_decreasing() -> None:
    registry = PhaseRegistry.default()
    state = ProgressState()
    previous = overall_percent(registry, state)
    for phase in registry.phases:
        state = start_phase(registry, state, phase.name)
        for percent in (0, 10, 55, 90, 100, 120):
            state = update_phase(state, percent)
            current = overall_percent(registry, state)
            assert 0 <= current <= 100
            assert current >= previous
            previous = current
    assert previous == pytest.approx(100.0)


def test_start_phase_resets_in_phase_percent() -> None:
    registry = PhaseRegistry([("a", 1), ("b", 1)])
    state = update_phase(start_phase(registry, ProgressState(), "a"), 70)
    state = start_phase(registry, state, "b")
    assert state.active_phase_index == 1
    assert state.in_phase_percent == 0


def test_phases_are_never_reentered() -> None:
    registry = PhaseRegistry([("a", 1), ("b", 1)])
    state = start_phase(registry, ProgressState(), "b")
    with pytest.raises(ValueError):
        start_phase(registry, state, "a")
    with pytest.raises(ValueError):
        start_phase(registry, state, "b")


def test_in_phase_percent_never_goes_backwards() -> None:
    registry = PhaseRegistry([("a", 1)])
    state = update_phase(start_phase(registry, ProgressState(), "a"), 60)
    state = update_phase(state, 20)
    assert state.in_phase_percent == 60


def test_update_without_phase_fails() -> None:
    with pytest.raises(ValueError):
        update_phase(ProgressState(), 10)


def test_eta_unknown_at_zero_progress() -> None:
    assert estimate_eta(5000, 0) == ETA_UNKNOWN
    assert estimate_remaining_ms(5000, 0) is None


def test_eta_extrapolates_linearly() -> None:
    assert estimate_remaining_ms(10_000, 25) == pytest.approx(30_000)
    assert estimate_eta(10_000, 25) == "30s"
    assert estimate_eta(10_000, 100) == "under 1 second"


def test_format_time() -> None:
    assert format_time(500) == "under 1 second"
    assert format_time(1000) == "1s"
    assert format_time(65_000) == "1m 5s"
    assert format_time(3_700_000) == "1h 1m"


def test_format_bytes() -> None:
    assert format_bytes(0) == "0 B"
    assert format_bytes(512) == "512 B"
    assert format_bytes(1536) == "1.5 KB"
    assert format_bytes(5 * 1024 * 1024) == "5 MB"
