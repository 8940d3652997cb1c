from __future__ import annotations

import logging
from dataclasses import dataclass

from . import penalties as penalty_rules
from .audio import CuePlayer
from .clock import GameClock
from .errors import GameFinishedError, PermissionDeniedError, ValidationError
from .models import Game, GameStatus, Penalty, PenaltyType, Player, Stat, StatType, Team, User

logger = logging.getLogger(__name__)

SIDES = ("home", "away")


def format_clock(seconds: int) -> str:
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


def coerce_stat_type(value: StatType | str) -> StatType:
    if isinstance(value, StatType):
        return value
    try:
        return StatType(value)
    except ValueError:
        raise ValidationError(f"Unknown stat type: {value!r}") from None


@dataclass(slots=True)
class LogEntry:
    stat_id: str
    timestamp: int
    text: str

    @property
    def clock(self) -> str:
        return format_clock(self.timestamp)


class GameTracker:
    """Live scoring for a single game: clock, stat log, score and penalties.

    All writes go straight into the wrapped ``Game``; the clock's remaining
    time is copied into ``game.game_clock`` after every clock operation.
    """

    def __init__(self, game: Game, cue_player: CuePlayer | None = None, clock: GameClock | None = None) -> None:
        self.game = game
        self.clock = clock or GameClock(remaining=game.game_clock, cue_player=cue_player)

    # Lifecycle

    def start(self) -> None:
        self._ensure_editable()
        if self.game.status == GameStatus.SCHEDULED:
            self.game.status = GameStatus.LIVE
            logger.info("game %s is live", self.game.game_id)

    def end(self, user: User) -> None:
        if not user.is_staff:
            raise PermissionDeniedError(f"{user.username} is not allowed to end games.")
        self._ensure_editable()
        self.clock.pause()
        self.clock.reset(0)
        self.game.game_clock = 0
        self.game.status = GameStatus.FINISHED
        logger.info(
            "game %s finished %s %d - %d %s",
            self.game.game_id,
            self.game.home_team.name,
            self.game.score.home,
            self.game.score.away,
            self.game.away_team.name,
        )

    def attach_summary(self, summary: str) -> None:
        self.game.ai_summary = summary

    def _ensure_editable(self) -> None:
        if self.game.is_finished:
            raise GameFinishedError(f"Game {self.game.game_id} is finished.")

    # Clock

    def _sync_clock(self) -> int:
        self.game.game_clock = self.clock.remaining
        return self.game.game_clock

    def start_clock(self) -> int:
        self._ensure_editable()
        self.clock.start()
        return self._sync_clock()

    def pause_clock(self) -> int:
        self.clock.pause()
        return self._sync_clock()

    def toggle_clock(self) -> bool:
        self._ensure_editable()
        running = self.clock.toggle()
        self._sync_clock()
        return running

    def tick(self) -> int:
        if self.game.is_finished:
            return self.game.game_clock
        self.clock.tick()
        return self._sync_clock()

    def adjust_clock(self, delta_seconds: int) -> int:
        self._ensure_editable()
        self.clock.adjust(delta_seconds)
        return self._sync_clock()

    def reset_clock(self, value: int | None = None) -> int:
        self._ensure_editable()
        self.clock.reset(value)
        return self._sync_clock()

    def set_period(self, period: int) -> int:
        self._ensure_editable()
        self.game.current_period = max(1, int(period))
        return self.game.current_period

    def next_period(self) -> int:
        return self.set_period(self.game.current_period + 1)

    def previous_period(self) -> int:
        return self.set_period(self.game.current_period - 1)

    # Stats

    def _resolve_player(self, player_id: str, team_id: str) -> tuple[Player, Team]:
        team = self.game.team_by_id(team_id)
        if team is None:
            raise ValidationError(f"Team {team_id} is not playing in this game.")
        player = team.find_player(player_id)
        if player is None:
            raise ValidationError(f"Player {player_id} is not on the {team.name} roster.")
        return player, team

    def record_stat(
        self,
        player_id: str,
        team_id: str,
        stat_type: StatType | str,
        timestamp: int | None = None,
        assisting_player_id: str | None = None,
    ) -> Stat:
        self._ensure_editable()
        stat_type = coerce_stat_type(stat_type)
        player, team = self._resolve_player(player_id, team_id)
        if stat_type == StatType.ASSIST:
            raise ValidationError("Assists are credited through the goal they set up.")
        if assisting_player_id:
            if stat_type != StatType.GOAL:
                raise ValidationError("Only goals can carry an assist.")
            if assisting_player_id == player_id:
                raise ValidationError("A player cannot assist their own goal.")
            if not team.has_player(assisting_player_id):
                raise ValidationError(f"Assisting player {assisting_player_id} is not on the {team.name} roster.")

        stat = Stat(
            player_id=player.player_id,
            team_id=team.team_id,
            type=stat_type,
            timestamp=self.game.game_clock if timestamp is None else int(timestamp),
            assisting_player_id=assisting_player_id or None,
        )
        self.game.stats.append(stat)
        if stat_type == StatType.GOAL:
            if team.team_id == self.game.home_team.team_id:
                self.game.score.home += 1
            else:
                self.game.score.away += 1
        logger.debug("game %s: %s %s by %s", self.game.game_id, team.name, stat_type.value, player.name)
        return stat

    def adjust_score(self, side: str, delta: int) -> int:
        """Manual correction; deliberately independent of the stat log."""
        self._ensure_editable()
        side = self._side(side)
        value = max(0, getattr(self.game.score, side) + int(delta))
        setattr(self.game.score, side, value)
        return value

    def _side(self, side_or_team_id: str) -> str:
        if side_or_team_id in SIDES:
            return side_or_team_id
        if side_or_team_id == self.game.home_team.team_id:
            return "home"
        if side_or_team_id == self.game.away_team.team_id:
            return "away"
        raise ValidationError(f"Unknown side: {side_or_team_id!r}")

    def game_log(self) -> list[LogEntry]:
        entries: list[LogEntry] = []
        for stat in sorted(self.game.stats, key=lambda s: s.timestamp, reverse=True):
            player = self.game.find_player(stat.player_id)
            team = self.game.team_by_id(stat.team_id)
            if player is None or team is None:
                continue
            text = f"{team.name}: #{player.jersey_number} {player.name} - {stat.type.value}"
            if stat.type == StatType.GOAL and stat.assisting_player_id:
                assister = self.game.find_player(stat.assisting_player_id)
                if assister is not None:
                    text += f" (Assist #{assister.jersey_number} {assister.name})"
            entries.append(LogEntry(stat_id=stat.stat_id, timestamp=stat.timestamp, text=text))
        return entries

    # Penalties

    def record_penalty(
        self,
        player_id: str,
        team_id: str,
        penalty_type: PenaltyType | str,
        duration: int,
        current_clock: int | None = None,
    ) -> Penalty:
        self._ensure_editable()
        player, team = self._resolve_player(player_id, team_id)
        penalty = penalty_rules.make_penalty(
            player.player_id,
            team.team_id,
            penalty_type,
            duration,
            self.game.game_clock if current_clock is None else current_clock,
        )
        self.game.penalties.append(penalty)
        logger.debug("game %s: %s penalty on %s (%ss)", self.game.game_id, penalty.type.value, player.name, duration)
        return penalty

    def active_penalties(self, clock: int | None = None) -> list[Penalty]:
        return penalty_rules.active_penalties(self.game.penalties, self.game.game_clock if clock is None else clock)

    def penalty_box(self, clock: int | None = None) -> list[dict[str, object]]:
        clock = self.game.game_clock if clock is None else clock
        rows: list[dict[str, object]] = []
        for penalty in penalty_rules.active_penalties(self.game.penalties, clock):
            team = self.game.team_by_id(penalty.team_id)
            player = team.find_player(penalty.player_id) if team is not None else None
            remaining = penalty_rules.time_remaining(penalty, clock)
            rows.append(
                {
                    "penalty_id": penalty.penalty_id,
                    "team_name": team.name if team is not None else "",
                    "player_name": player.name if player is not None else "",
                    "jersey_number": player.jersey_number if player is not None else "",
                    "type": penalty.type.value,
                    "duration": penalty.duration,
                    "remaining": remaining,
                    "remaining_display": format_clock(remaining),
                }
            )
        return rows
