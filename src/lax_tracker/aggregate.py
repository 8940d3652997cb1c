"""Stat aggregation derived from the flat stat log.

Nothing here is cached: every call rescans the log, so results can never go
stale relative to the game they were computed from.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from .models import Game, GameStatus, StatType, Team


def _zero_counts() -> dict[StatType, int]:
    return {stat_type: 0 for stat_type in StatType}


@dataclass(slots=True)
class StatLine:
    counts: dict[StatType, int] = field(default_factory=_zero_counts)

    def __getitem__(self, stat_type: StatType) -> int:
        return self.counts.get(stat_type, 0)

    def add(self, stat_type: StatType, amount: int = 1) -> None:
        self.counts[stat_type] = self.counts.get(stat_type, 0) + amount

    def merge(self, other: StatLine) -> None:
        for stat_type, value in other.counts.items():
            self.add(stat_type, value)

    @property
    def goals(self) -> int:
        return self[StatType.GOAL]

    @property
    def assists(self) -> int:
        return self[StatType.ASSIST]

    @property
    def points(self) -> int:
        return self.goals + self.assists

    def as_dict(self) -> dict[str, int]:
        out = {stat_type.value: self[stat_type] for stat_type in StatType}
        out["Points"] = self.points
        return out


def aggregate(game: Game) -> dict[str, StatLine]:
    """Per-player stat lines for one game, keyed by player id.

    Every rostered player is present even with no events. A goal with an
    assisting player credits one Assist to that player.
    """
    lines: dict[str, StatLine] = {player.player_id: StatLine() for player in game.all_players()}
    for stat in game.stats:
        lines.setdefault(stat.player_id, StatLine()).add(stat.type)
        if stat.type == StatType.GOAL and stat.assisting_player_id:
            lines.setdefault(stat.assisting_player_id, StatLine()).add(StatType.ASSIST)
    return lines


def team_totals(team: Team, lines: dict[str, StatLine]) -> StatLine:
    total = StatLine()
    for player in team.roster:
        line = lines.get(player.player_id)
        if line is not None:
            total.merge(line)
    return total


def box_score(game: Game) -> dict[str, object]:
    lines = aggregate(game)
    out: dict[str, object] = {}
    for side, team in (("home", game.home_team), ("away", game.away_team)):
        out[side] = {
            "team_id": team.team_id,
            "team_name": team.name,
            "players": [
                {
                    "player_id": player.player_id,
                    "name": player.name,
                    "jersey_number": player.jersey_number,
                    "position": player.position,
                    "stats": lines[player.player_id].as_dict(),
                }
                for player in team.roster
            ],
            "totals": team_totals(team, lines).as_dict(),
        }
    return out


@dataclass(slots=True)
class SeasonLine:
    player_id: str
    name: str
    jersey_number: str
    position: str
    team_id: str
    team_name: str
    games_played: int = 0
    stats: StatLine = field(default_factory=StatLine)

    def as_dict(self) -> dict[str, object]:
        return {
            "player_id": self.player_id,
            "name": self.name,
            "jersey_number": self.jersey_number,
            "position": self.position,
            "team_id": self.team_id,
            "team_name": self.team_name,
            "games_played": self.games_played,
            "stats": self.stats.as_dict(),
        }


def season_aggregate(teams: Iterable[Team], games: Iterable[Game]) -> list[SeasonLine]:
    """Totals across finished games for every player on a current roster."""
    by_player: dict[str, SeasonLine] = {}
    for team in teams:
        for player in team.roster:
            by_player[player.player_id] = SeasonLine(
                player_id=player.player_id,
                name=player.name,
                jersey_number=player.jersey_number,
                position=player.position,
                team_id=team.team_id,
                team_name=team.name,
            )

    for game in games:
        if game.status != GameStatus.FINISHED:
            continue
        appeared: set[str] = set()
        for stat in game.stats:
            appeared.add(stat.player_id)
            if stat.assisting_player_id:
                appeared.add(stat.assisting_player_id)
        for player_id in appeared:
            if player_id in by_player:
                by_player[player_id].games_played += 1

        for player_id, line in aggregate(game).items():
            if player_id in by_player:
                by_player[player_id].stats.merge(line)
    return list(by_player.values())


SEASON_SORT_KEYS = ("name", "team_name", "games_played", *(s.value for s in StatType))


def sort_season_lines(lines: list[SeasonLine], key: str = "name", descending: bool = False) -> list[SeasonLine]:
    if key in {"name", "team_name"}:
        return sorted(lines, key=lambda line: getattr(line, key).lower(), reverse=descending)
    if key == "games_played":
        return sorted(lines, key=lambda line: line.games_played, reverse=descending)
    try:
        stat_type = StatType(key)
    except ValueError:
        raise ValueError(f"Unknown sort key: {key}") from None
    return sorted(lines, key=lambda line: line.stats[stat_type], reverse=descending)
