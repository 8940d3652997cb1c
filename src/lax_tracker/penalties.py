from __future__ import annotations

from typing import Iterable

from .errors import ValidationError
from .models import Penalty, PenaltyType


def coerce_penalty_type(value: PenaltyType | str) -> PenaltyType:
    if isinstance(value, PenaltyType):
        return value
    try:
        return PenaltyType(value)
    except ValueError:
        raise ValidationError(f"Unknown penalty type: {value!r}") from None


def make_penalty(
    player_id: str,
    team_id: str,
    penalty_type: PenaltyType | str,
    duration: int,
    current_clock: int,
) -> Penalty:
    """Build a penalty served from ``current_clock`` down to its release time.

    The release time is not clamped: a penalty longer than the time left in the
    period has a negative release time and stays active for the rest of it.
    """
    duration = int(duration)
    if duration <= 0:
        raise ValidationError("Penalty duration must be positive.")
    current_clock = int(current_clock)
    return Penalty(
        player_id=player_id,
        team_id=team_id,
        type=coerce_penalty_type(penalty_type),
        duration=duration,
        start_time=current_clock,
        release_time=current_clock - duration,
    )


def is_active(penalty: Penalty, clock: int) -> bool:
    return penalty.release_time < clock <= penalty.start_time


def active_penalties(penalties: Iterable[Penalty], clock: int) -> list[Penalty]:
    """Penalties still being served at ``clock``, soonest release first."""
    return sorted((p for p in penalties if is_active(p, clock)), key=lambda p: p.release_time)


def time_remaining(penalty: Penalty, clock: int) -> int:
    return max(0, clock - penalty.release_time)
