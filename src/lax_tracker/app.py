from __future__ import annotations

from typing import Iterable

from .aggregate import SeasonLine, aggregate, team_totals
from .drill import SessionSummary
from .models import AppState, Game, Player, Role, StatType, Team, User
from .tracker import GameTracker, format_clock

SAMPLE_TEAM_NAME = "Sample Team"

# Column order for box scores, matching the scorer's sheet.
BOX_SCORE_COLUMNS: tuple[tuple[StatType, str], ...] = (
    (StatType.GOAL, "G"),
    (StatType.ASSIST, "A"),
    (StatType.SHOT, "SHT"),
    (StatType.GROUND_BALL, "GB"),
    (StatType.TURNOVER, "TO"),
    (StatType.CAUSED_TURNOVER, "CT"),
    (StatType.SAVE, "SV"),
    (StatType.FACEOFF_WIN, "FOW"),
    (StatType.FACEOFF_LOSS, "FOL"),
)


def build_sample_state() -> AppState:
    """First-run data: one user per role and a sample team with a linked player."""
    admin = User(username="admin", email="admin@example.com", role=Role.ADMIN)
    player_user = User(username="Player", email="player@example.com", role=Role.PLAYER)
    parent = User(username="Parent", email="parent@example.com", role=Role.PARENT)
    coach = User(username="Coach", email="coach@example.com", role=Role.COACH)

    sample_player = Player(name=player_user.username, jersey_number="13", position="Midfield", user_id=player_user.user_id)
    team = Team(name=SAMPLE_TEAM_NAME, roster=[sample_player])

    player_user.team_ids = [team.team_id]
    coach.team_ids = [team.team_id]
    parent.followed_team_ids = [team.team_id]
    parent.followed_player_ids = [sample_player.player_id]
    return AppState(teams=[team], users=[admin, player_user, parent, coach])


def format_scoreboard(game: Game) -> str:
    return (
        f"{game.home_team.name} {game.score.home} - {game.score.away} {game.away_team.name}"
        f"  P{game.current_period} {format_clock(game.game_clock)} [{game.status.value}]"
    )


def format_box_score(game: Game) -> str:
    lines = aggregate(game)
    header = "  #  Player               " + " ".join(f"{label:>3}" for _stat, label in BOX_SCORE_COLUMNS)
    out = [format_scoreboard(game)]
    for team in (game.home_team, game.away_team):
        out.extend(["", team.name, header])
        for player in team.roster:
            line = lines[player.player_id]
            out.append(
                f"{player.jersey_number:>3}  {player.name:<20} "
                + " ".join(f"{line[stat]:>3}" for stat, _label in BOX_SCORE_COLUMNS)
            )
        totals = team_totals(team, lines)
        out.append(f"{'':>3}  {'Totals':<20} " + " ".join(f"{totals[stat]:>3}" for stat, _label in BOX_SCORE_COLUMNS))
    return "\n".join(out)


def format_game_log(game: Game, limit: int | None = None) -> str:
    entries = GameTracker(game).game_log()
    if limit is not None:
        entries = entries[:limit]
    if not entries:
        return "No events recorded."
    return "\n".join(f"{entry.clock:>5}  {entry.text}" for entry in entries)


def format_season_stats(lines: Iterable[SeasonLine], title: str = "Season Stats", limit: int = 50) -> str:
    out = [title, "Player               Team             GP   G   A   P  GB  FOW"]
    for line in list(lines)[:limit]:
        stats = line.stats
        out.append(
            f"{line.name:<20} {line.team_name:<16} {line.games_played:>2} {stats.goals:>3} {stats.assists:>3}"
            f" {stats.points:>3} {stats[StatType.GROUND_BALL]:>3} {stats[StatType.FACEOFF_WIN]:>4}"
        )
    return "\n".join(out)


def format_session_summary(summary: SessionSummary) -> str:
    if summary.count == 0:
        return "No reps recorded."
    return (
        f"Reps: {summary.count}  Average: {summary.average}ms  "
        f"Best: {summary.best}ms  Worst: {summary.worst}ms"
    )
