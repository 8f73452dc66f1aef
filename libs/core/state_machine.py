from __future__ import annotations

from typing import Dict, Optional, Set

from .errors import GenerationConflictError
from .models import PhaseStatus, StreamStatus

PHASE_TRANSITIONS: Dict[PhaseStatus, Set[PhaseStatus]] = {
    PhaseStatus.pending: {PhaseStatus.generating},
    # A cancelled run restores whatever status the phase had before it started.
    PhaseStatus.generating: {PhaseStatus.ready, PhaseStatus.error, PhaseStatus.pending},
    PhaseStatus.ready: {PhaseStatus.generating},
    PhaseStatus.error: {PhaseStatus.generating, PhaseStatus.pending},
}

STREAM_TRANSITIONS: Dict[StreamStatus, Set[StreamStatus]] = {
    StreamStatus.streaming: {StreamStatus.complete, StreamStatus.cancelled, StreamStatus.error},
    StreamStatus.complete: {StreamStatus.streaming},
    # A cancel that lands after the final section still lets the run complete.
    StreamStatus.cancelled: {StreamStatus.streaming, StreamStatus.complete, StreamStatus.error},
    StreamStatus.error: {StreamStatus.streaming},
}


def validate_phase_transition(current: PhaseStatus, new: PhaseStatus) -> bool:
    return new in PHASE_TRANSITIONS.get(current, set())


def validate_stream_transition(current: StreamStatus, new: StreamStatus) -> bool:
    return new in STREAM_TRANSITIONS.get(current, set())


def ensure_phase_transition(current: PhaseStatus, new: PhaseStatus) -> None:
    current, new = PhaseStatus(current), PhaseStatus(new)
    if current != new and not validate_phase_transition(current, new):
        raise GenerationConflictError(
            f"Invalid phase status transition: {current.value} -> {new.value}"
        )


def ensure_stream_transition(current: Optional[StreamStatus], new: StreamStatus) -> None:
    new = StreamStatus(new)
    if current is None:
        return
    current = StreamStatus(current)
    if current != new and not validate_stream_transition(current, new):
        raise GenerationConflictError(
            f"Invalid stream status transition: {current.value} -> {new.value}"
        )
