from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path
from typing import Any, ClassVar

from .config import PERIOD_LENGTH_SECONDS
from .models import (
    AppState,
    DrillAssignment,
    DrillResults,
    DrillStatus,
    DrillType,
    Game,
    GameStatus,
    Penalty,
    PenaltyType,
    Player,
    Role,
    Score,
    Stat,
    StatType,
    Team,
    User,
    UserStatus,
    new_id,
)

logger = logging.getLogger(__name__)


def _dict_items(raw: Any) -> list[dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    return [item for item in raw if isinstance(item, dict)]


def _str_list(raw: Any) -> list[str]:
    if not isinstance(raw, list):
        return []
    return [str(item) for item in raw if item is not None]


def _int_list(raw: Any) -> list[int]:
    out: list[int] = []
    if not isinstance(raw, list):
        return out
    for item in raw:
        try:
            out.append(int(item))
        except (TypeError, ValueError):
            continue
    return out


def _optional_str(raw: Any) -> str | None:
    return None if raw in (None, "") else str(raw)


class JsonStore:
    """Whole-snapshot JSON persistence for the club state.

    Loading never raises: a missing file yields an empty state, an unreadable
    or future-version file yields an empty state with ``last_load_error`` set,
    and individual malformed records are skipped.
    """

    SAVE_VERSION: ClassVar[int] = 2

    def __init__(self, path: str | Path = "lacrosse_db.json") -> None:
        self.path = Path(path)
        self.last_load_error: str = ""

    @property
    def backup_path(self) -> Path:
        return self.path.with_suffix(self.path.suffix + ".bak")

    def load(self) -> AppState:
        self.last_load_error = ""
        if not self.path.exists():
            return AppState()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as exc:
            self.last_load_error = f"Failed to load club data ({exc}); starting with defaults."
            logger.error(self.last_load_error)
            return AppState()
        if not isinstance(raw, dict):
            self.last_load_error = "Club data file has invalid format; starting with defaults."
            logger.error(self.last_load_error)
            return AppState()
        try:
            version = int(raw.get("save_version", 1) or 1)
        except (TypeError, ValueError):
            version = 1
        if version > self.SAVE_VERSION:
            self.last_load_error = f"Unsupported club data version {version}; app supports up to {self.SAVE_VERSION}."
            logger.error(self.last_load_error)
            return AppState()
        return self._deserialize_state(raw)

    def save(self, state: AppState, *, with_backup: bool = True) -> bool:
        payload = self._serialize_state(state)
        try:
            self._write_json_with_backup(self.path, payload, with_backup=with_backup)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to save club data to %s: %s", self.path, exc)
            return False
        return True

    def _write_json_with_backup(self, path: Path, payload: Any, *, with_backup: bool = True) -> None:
        if with_backup and path.exists():
            try:
                shutil.copy2(path, self.backup_path)
            except OSError as exc:
                logger.warning("Could not refresh backup %s: %s", self.backup_path, exc)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    # Serialization

    def _serialize_state(self, state: AppState) -> dict[str, Any]:
        return {
            "save_version": self.SAVE_VERSION,
            "teams": [self._serialize_team(team) for team in state.teams],
            "games": [self._serialize_game(game) for game in state.games],
            "users": [self._serialize_user(user) for user in state.users],
            "drill_assignments": [self._serialize_assignment(a) for a in state.drill_assignments],
            "sound_effects": dict(state.sound_effects),
            "active_game_id": state.active_game_id,
        }

    def _serialize_player(self, player: Player) -> dict[str, Any]:
        return {
            "id": player.player_id,
            "name": player.name,
            "jersey_number": player.jersey_number,
            "position": player.position,
            "user_id": player.user_id,
        }

    def _serialize_team(self, team: Team) -> dict[str, Any]:
        return {
            "id": team.team_id,
            "name": team.name,
            "roster": [self._serialize_player(player) for player in team.roster],
        }

    def _serialize_game(self, game: Game) -> dict[str, Any]:
        return {
            "id": game.game_id,
            "home_team": self._serialize_team(game.home_team),
            "away_team": self._serialize_team(game.away_team),
            "scheduled_time": game.scheduled_time,
            "status": game.status.value,
            "score": {"home": game.score.home, "away": game.score.away},
            "stats": [
                {
                    "id": stat.stat_id,
                    "player_id": stat.player_id,
                    "team_id": stat.team_id,
                    "type": stat.type.value,
                    "timestamp": stat.timestamp,
                    "assisting_player_id": stat.assisting_player_id,
                }
                for stat in game.stats
            ],
            "penalties": [
                {
                    "id": penalty.penalty_id,
                    "player_id": penalty.player_id,
                    "team_id": penalty.team_id,
                    "type": penalty.type.value,
                    "duration": penalty.duration,
                    "start_time": penalty.start_time,
                    "release_time": penalty.release_time,
                }
                for penalty in game.penalties
            ],
            "current_period": game.current_period,
            "game_clock": game.game_clock,
            "ai_summary": game.ai_summary,
        }

    def _serialize_user(self, user: User) -> dict[str, Any]:
        return {
            "id": user.user_id,
            "username": user.username,
            "email": user.email,
            "role": user.role.value,
            "team_ids": list(user.team_ids),
            "followed_team_ids": list(user.followed_team_ids),
            "followed_player_ids": list(user.followed_player_ids),
            "status": user.status.value,
        }

    def _serialize_assignment(self, assignment: DrillAssignment) -> dict[str, Any]:
        results = None
        if assignment.results is not None:
            results = {
                "reaction_times": list(assignment.results.reaction_times),
                "shot_history": list(assignment.results.shot_history),
            }
        return {
            "id": assignment.assignment_id,
            "assigning_coach_id": assignment.assigning_coach_id,
            "player_id": assignment.player_id,
            "drill_type": assignment.drill_type.value,
            "assigned_date": assignment.assigned_date,
            "notes": assignment.notes,
            "status": assignment.status.value,
            "completed_date": assignment.completed_date,
            "results": results,
        }

    # Deserialization

    def _deserialize_state(self, raw: dict[str, Any]) -> AppState:
        raw_effects = raw.get("sound_effects")
        sound_effects: dict[str, str] = {}
        if isinstance(raw_effects, dict):
            sound_effects = {str(k): str(v) for k, v in raw_effects.items() if isinstance(v, str) and v}

        state = AppState(
            teams=self._deserialize_many(raw.get("teams"), self._deserialize_team, "team"),
            games=self._deserialize_many(raw.get("games"), self._deserialize_game, "game"),
            users=self._deserialize_many(raw.get("users"), self._deserialize_user, "user"),
            drill_assignments=self._deserialize_many(
                raw.get("drill_assignments", raw.get("drillAssignments")), self._deserialize_assignment, "drill"
            ),
            sound_effects=sound_effects,
            active_game_id=_optional_str(raw.get("active_game_id")),
        )
        if state.active_game_id and not any(game.game_id == state.active_game_id for game in state.games):
            state.active_game_id = None
        return state

    def _deserialize_many(self, raw_items: Any, parse: Any, label: str) -> list[Any]:
        out: list[Any] = []
        for item in _dict_items(raw_items):
            try:
                out.append(parse(item))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed %s record: %s", label, exc)
        return out

    def _deserialize_player(self, raw: dict[str, Any]) -> Player:
        name = str(raw.get("name", "")).strip()
        if not name:
            raise ValueError("player without a name")
        return Player(
            player_id=str(raw.get("id") or new_id("player")),
            name=name,
            jersey_number=str(raw.get("jersey_number", raw.get("jerseyNumber", "")) or ""),
            position=str(raw.get("position", "") or ""),
            user_id=_optional_str(raw.get("user_id", raw.get("userId"))),
        )

    def _deserialize_team(self, raw: dict[str, Any]) -> Team:
        name = str(raw.get("name", "")).strip()
        if not name:
            raise ValueError("team without a name")
        return Team(
            team_id=str(raw.get("id") or new_id("team")),
            name=name,
            roster=self._deserialize_many(raw.get("roster"), self._deserialize_player, "player"),
        )

    def _deserialize_game(self, raw: dict[str, Any]) -> Game:
        home = raw.get("home_team", raw.get("homeTeam"))
        away = raw.get("away_team", raw.get("awayTeam"))
        if not isinstance(home, dict) or not isinstance(away, dict):
            raise ValueError("game without both teams")
        raw_score = raw.get("score") if isinstance(raw.get("score"), dict) else {}

        stats: list[Stat] = []
        for item in _dict_items(raw.get("stats")):
            try:
                stats.append(
                    Stat(
                        stat_id=str(item.get("id") or new_id("stat")),
                        player_id=str(item["player_id"] if "player_id" in item else item["playerId"]),
                        team_id=str(item["team_id"] if "team_id" in item else item["teamId"]),
                        type=StatType(item["type"]),
                        timestamp=int(item.get("timestamp", 0)),
                        assisting_player_id=_optional_str(
                            item.get("assisting_player_id", item.get("assistingPlayerId"))
                        ),
                    )
                )
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed stat record: %s", exc)

        penalties: list[Penalty] = []
        for item in _dict_items(raw.get("penalties")):
            try:
                penalties.append(
                    Penalty(
                        penalty_id=str(item.get("id") or new_id("penalty")),
                        player_id=str(item["player_id"] if "player_id" in item else item["playerId"]),
                        team_id=str(item["team_id"] if "team_id" in item else item["teamId"]),
                        type=PenaltyType(item["type"]),
                        duration=int(item["duration"]),
                        start_time=int(item.get("start_time", item.get("startTime"))),
                        release_time=int(item.get("release_time", item.get("releaseTime"))),
                    )
                )
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed penalty record: %s", exc)

        try:
            status = GameStatus(raw.get("status", GameStatus.SCHEDULED.value))
        except ValueError:
            status = GameStatus.SCHEDULED

        return Game(
            game_id=str(raw.get("id") or new_id("game")),
            home_team=self._deserialize_team(home),
            away_team=self._deserialize_team(away),
            scheduled_time=str(raw.get("scheduled_time", raw.get("scheduledTime", ""))),
            status=status,
            score=Score(
                home=max(0, int(raw_score.get("home", 0) or 0)),
                away=max(0, int(raw_score.get("away", 0) or 0)),
            ),
            stats=stats,
            penalties=penalties,
            current_period=max(1, int(raw.get("current_period", raw.get("currentPeriod", 1)) or 1)),
            game_clock=max(0, int(raw.get("game_clock", raw.get("gameClock", PERIOD_LENGTH_SECONDS)))),
            ai_summary=_optional_str(raw.get("ai_summary", raw.get("aiSummary"))),
        )

    def _deserialize_user(self, raw: dict[str, Any]) -> User:
        username = str(raw.get("username", "")).strip()
        if not username:
            raise ValueError("user without a username")
        try:
            status = UserStatus(raw.get("status", UserStatus.ACTIVE.value))
        except ValueError:
            logger.warning("Unknown status %r for user %s; treating as active", raw.get("status"), username)
            status = UserStatus.ACTIVE
        return User(
            user_id=str(raw.get("id") or new_id("user")),
            username=username,
            email=str(raw.get("email", "") or ""),
            role=Role(raw.get("role", Role.FAN.value)),
            team_ids=_str_list(raw.get("team_ids", raw.get("teamIds"))),
            followed_team_ids=_str_list(raw.get("followed_team_ids", raw.get("followedTeamIds"))),
            followed_player_ids=_str_list(raw.get("followed_player_ids", raw.get("followedPlayerIds"))),
            status=status,
        )

    def _deserialize_assignment(self, raw: dict[str, Any]) -> DrillAssignment:
        raw_results = raw.get("results")
        results = None
        if isinstance(raw_results, dict):
            results = DrillResults(
                reaction_times=_int_list(raw_results.get("reaction_times", raw_results.get("reactionTimes"))),
                shot_history=_int_list(raw_results.get("shot_history", raw_results.get("shotHistory"))),
            )
        return DrillAssignment(
            assignment_id=str(raw.get("id") or new_id("drill")),
            assigning_coach_id=str(raw["assigning_coach_id"] if "assigning_coach_id" in raw else raw["assigningCoachId"]),
            player_id=str(raw["player_id"] if "player_id" in raw else raw["playerId"]),
            drill_type=DrillType(raw.get("drill_type", raw.get("drillType", DrillType.FACE_OFF.value))),
            assigned_date=str(raw.get("assigned_date", raw.get("assignedDate", ""))),
            notes=str(raw.get("notes", "") or ""),
            status=DrillStatus(raw.get("status", DrillStatus.ASSIGNED.value)),
            completed_date=_optional_str(raw.get("completed_date", raw.get("completedDate"))),
            results=results,
        )
