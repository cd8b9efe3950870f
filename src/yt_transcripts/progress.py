"""Weighted multi-phase progress and ETA estimation.

Everything here is pure: the registry is read-only once built and the
estimator functions take a ``ProgressState`` and return a new one instead of
mutating shared state. The pipeline owns the only live ``ProgressState``.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import replace

from yt_transcripts.types import Phase, ProgressState

PHASE_DOWNLOAD = "Downloading audio"
PHASE_UPLOAD = "Uploading to AssemblyAI"
PHASE_TRANSCRIBE = "Transcribing audio"
PHASE_SAVE_TRANSCRIPT = "Saving transcript"
PHASE_SAVE_AUDIO = "Saving audio file"

DEFAULT_PHASES: tuple[tuple[str, float], ...] = (
    (PHASE_DOWNLOAD, 30),
    (PHASE_UPLOAD, 20),
    (PHASE_TRANSCRIBE, 40),
    (PHASE_SAVE_TRANSCRIPT, 5),
    (PHASE_SAVE_AUDIO, 5),
)

ETA_UNKNOWN = "unknown"


class PhaseNotFound(LookupError):
    pass


class PhaseRegistry:
    def __init__(self, phases: Iterable[tuple[str, float] | Phase]) -> None:
        items: list[Phase] = []
        for entry in phases:
            phase = entry if isinstance(entry, Phase) else Phase(name=entry[0], weight=float(entry[1]))
            if not math.isfinite(phase.weight) or phase.weight <= 0:
                raise ValueError(f"Phase weight must be a positive finite number: {phase.name!r} has {phase.weight}")
            items.append(phase)

        names = [phase.name for phase in items]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate phase names: {', '.join(duplicates)}")

        total = sum(phase.weight for phase in items)
        if total <= 0:
            raise ValueError("Phase registry needs at least one phase with positive weight")

        self._phases: tuple[Phase, ...] = tuple(items)
        self._index = {phase.name: i for i, phase in enumerate(self._phases)}
        self._total_weight = total

    @classmethod
    def default(cls) -> PhaseRegistry:
        return cls(DEFAULT_PHASES)

    @property
    def phases(self) -> tuple[Phase, ...]:
        return self._phases

    @property
    def total_weight(self) -> float:
        return self._total_weight

    def __len__(self) -> int:
        return len(self._phases)

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def index_of(self, name: str) -> int:
        try:
            return self._index[name]
        except KeyError:
            raise PhaseNotFound(f"Unknown phase: {name}") from None

    def weight_at(self, index: int) -> float:
        return self._phases[index].weight


def start_phase(registry: PhaseRegistry, state: ProgressState, name: str) -> ProgressState:
    """Advance to ``name``; phases may be skipped but never re-entered."""
    index = registry.index_of(name)
    if index <= state.active_phase_index:
        current = registry.phases[state.active_phase_index].name
        raise ValueError(f"Cannot enter phase {name!r} after {current!r}")
    return replace(state, active_phase_index=index, in_phase_percent=0.0)


def update_phase(state: ProgressState, percent: float) -> ProgressState:
    """Record in-phase completion. Values are clamped to 0..100 and never go backwards."""
    if state.active_phase_index < 0:
        raise ValueError("No phase has been started")
    clamped = min(100.0, max(0.0, float(percent)))
    return replace(state, in_phase_percent=max(state.in_phase_percent, clamped))


def overall_percent(registry: PhaseRegistry, state: ProgressState) -> float:
    index = state.active_phase_index
    if index < 0:
        return 0.0

    completed = sum(registry.weight_at(i) for i in range(min(index, len(registry))))
    partial = 0.0
    if index < len(registry):
        partial = registry.weight_at(index) * state.in_phase_percent / 100.0

    return min(100.0, 100.0 * (completed + partial) / registry.total_weight)


def estimate_remaining_ms(elapsed_ms: float, percent: float) -> float | None:
    """Linear extrapolation of the remaining time; ``None`` until progress is non-zero."""
    if percent <= 0:
        return None
    percent = min(percent, 100.0)
    return elapsed_ms / percent * (100.0 - percent)


def estimate_eta(elapsed_ms: float, percent: float) -> str:
    remaining = estimate_remaining_ms(elapsed_ms, percent)
    if remaining is None:
        return ETA_UNKNOWN
    return format_time(remaining)


def format_time(milliseconds: float) -> str:
    if milliseconds < 1000:
        return "under 1 second"

    seconds = int(milliseconds // 1000)
    minutes, secs = divmod(seconds, 60)
    hours, mins = divmod(minutes, 60)

    if hours > 0:
        return f"{hours}h {mins}m"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def format_bytes(size: float) -> str:
    if size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB"]
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(units) - 1:
        value /= 1024
        unit += 1
    return f"{round(value, 1):g} {units[unit]}"
