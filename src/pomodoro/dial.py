"""Project elapsed session time onto a repeating 60-minute dial.

Sessions longer than one ring period are drawn as stacked rings: every full
period becomes a completed ring, and the remainder is the angle of the ring in
progress. Everything here is a pure function of the timer context values, so a
UI that was suspended can resynchronise from one snapshot.

Direction policy: the dial turns clockwise (`cw`) while remaining time is
counted down and counter-clockwise (`ccw`) once the run is in overtime.
"""

from __future__ import annotations

from dataclasses import dataclass

from .constants import (
    DIAL_CLOCKWISE,
    DIAL_COUNTER_CLOCKWISE,
    OVERTIME_STATES,
    RING_PERIOD_SECONDS,
    STATE_COUNTDOWN,
    STATE_PAUSED,
)


@dataclass(frozen=True)
class RingProgress:
    completed_rings: int
    current_ring_angle: float


@dataclass(frozen=True)
class DialProjection:
    """Presentation values derived from one timer context reading."""
    dial_angle: float
    dial_direction: str
    completed_rings: int
    current_ring_angle: float
    elapsed_seconds: int
    display_time: str


def project_ring(elapsed_seconds: int, period_seconds: int = RING_PERIOD_SECONDS) -> RingProgress:
    if period_seconds <= 0:
        raise ValueError("period_seconds must be greater than zero")
    elapsed = max(0, int(elapsed_seconds))
    completed, into_ring = divmod(elapsed, period_seconds)
    return RingProgress(
        completed_rings=completed,
        current_ring_angle=(into_ring / period_seconds) * 360,
    )


def elapsed_for(
    state: str,
    setting_duration: int,
    time_remaining: int,
    overtime_elapsed: int,
) -> int:
    """Countdown-consumed plus overtime seconds for a context reading."""
    if state in (STATE_COUNTDOWN, STATE_PAUSED):
        return max(0, setting_duration - time_remaining)
    if state in OVERTIME_STATES:
        return max(0, setting_duration) + max(0, overtime_elapsed)
    return 0


def project_dial(
    state: str,
    setting_duration: int,
    time_remaining: int,
    overtime_elapsed: int,
    *,
    period_seconds: int = RING_PERIOD_SECONDS,
) -> DialProjection:
    elapsed = elapsed_for(state, setting_duration, time_remaining, overtime_elapsed)
    ring = project_ring(elapsed, period_seconds)

    if state in OVERTIME_STATES:
        return DialProjection(
            dial_angle=ring.current_ring_angle,
            dial_direction=DIAL_COUNTER_CLOCKWISE,
            completed_rings=ring.completed_rings,
            current_ring_angle=ring.current_ring_angle,
            elapsed_seconds=elapsed,
            display_time=format_display_time(overtime_elapsed),
        )

    # Idle previews the configured duration; countdown shows what is left.
    remaining = time_remaining if state in (STATE_COUNTDOWN, STATE_PAUSED) else setting_duration
    return DialProjection(
        dial_angle=_remaining_angle(remaining, period_seconds),
        dial_direction=DIAL_CLOCKWISE,
        completed_rings=ring.completed_rings,
        current_ring_angle=ring.current_ring_angle,
        elapsed_seconds=elapsed,
        display_time=format_display_time(remaining),
    )


def format_display_time(seconds: int) -> str:
    """Format as `M:SS`, or `H:MM:SS` from one hour up."""
    hours, remainder = divmod(max(0, int(seconds)), 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def _remaining_angle(remaining_seconds: int, period_seconds: int) -> float:
    remaining = max(0, int(remaining_seconds))
    into_ring = remaining % period_seconds
    if remaining > 0 and into_ring == 0:
        return 360.0
    return (into_ring / period_seconds) * 360
