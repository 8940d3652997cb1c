from __future__ import annotations

from datetime import datetime
from typing import Iterable

from .errors import ValidationError
from .models import Game, GameStatus, Team


def parse_scheduled_time(value: str) -> datetime:
    """Parse an ISO-8601 date/time ("2024-05-01T18:30", trailing Z allowed)."""
    text = str(value or "").strip()
    if not text:
        raise ValidationError("Date and time are required.")
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(f"Invalid date/time: {value!r}") from None
    # Compare naive and aware values on the same footing.
    return parsed.replace(tzinfo=None) if parsed.tzinfo is None else parsed.astimezone().replace(tzinfo=None)


def _time_key(game: Game) -> datetime:
    try:
        return parse_scheduled_time(game.scheduled_time)
    except ValidationError:
        return datetime.min


def find_team_by_name(teams: Iterable[Team], name: str) -> Team | None:
    wanted = name.strip().lower()
    for team in teams:
        if team.name.strip().lower() == wanted:
            return team
    return None


def validate_matchup(home: Team, opponent_name: str) -> None:
    if not opponent_name.strip():
        raise ValidationError("Opponent name is required.")
    if home.name.strip().lower() == opponent_name.strip().lower():
        raise ValidationError("Home and away teams cannot be the same.")


def upcoming_games(games: Iterable[Game]) -> list[Game]:
    """Scheduled games, soonest first."""
    return sorted((g for g in games if g.status == GameStatus.SCHEDULED), key=_time_key)


def finished_games(games: Iterable[Game]) -> list[Game]:
    """Finished games, most recent first."""
    return sorted((g for g in games if g.status == GameStatus.FINISHED), key=_time_key, reverse=True)


def live_games(games: Iterable[Game]) -> list[Game]:
    return sorted((g for g in games if g.status == GameStatus.LIVE), key=_time_key)


def games_for_team(games: Iterable[Game], team_id: str) -> list[Game]:
    return sorted((g for g in games if g.involves_team(team_id)), key=_time_key)
