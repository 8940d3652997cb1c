from __future__ import annotations

import logging
from pathlib import Path
from threading import RLock
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .aggregate import SEASON_SORT_KEYS, box_score
from .ai import get_coach_assistant
from .club import ClubManager
from .config import (
    CUSTOM_SOUND_NAMES,
    DEFAULT_PENALTY_DURATION,
    DEFAULT_TIMED_SESSION_MINUTES,
    DRILL_COUNT_PRESETS,
    LACROSSE_POSITIONS,
    PENALTY_DURATION_PRESETS,
    PERIOD_LENGTH_SECONDS,
    SENSITIVITY_THRESHOLD,
    VIDEO_HEIGHT,
    VIDEO_WIDTH,
    configure_logging,
    get_settings,
)
from .errors import (
    GameFinishedError,
    NotFoundError,
    PermissionDeniedError,
    RosterImportError,
    TrackerError,
    ValidationError,
)
from .models import DrillAssignment, Game, PenaltyType, Player, Role, StatType, Team, User
from .storage import JsonStore
from .tracker import format_clock

logger = logging.getLogger(__name__)


class TeamPayload(BaseModel):
    name: str


class PlayerPayload(BaseModel):
    name: str
    jersey_number: str
    position: str = ""
    user_id: str | None = None


class PlayerUpdate(BaseModel):
    name: str | None = None
    jersey_number: str | None = None
    position: str | None = None


class RosterImportPayload(BaseModel):
    text: str


class GamePayload(BaseModel):
    home_team_id: str
    opponent_name: str
    scheduled_time: str


class ClockAction(BaseModel):
    action: str = "toggle"
    seconds: int | None = None


class PeriodSelection(BaseModel):
    period: int


class StatPayload(BaseModel):
    player_id: str
    team_id: str
    type: str
    assisting_player_id: str | None = None


class PenaltyPayload(BaseModel):
    player_id: str
    team_id: str
    type: str
    duration: int = DEFAULT_PENALTY_DURATION


class ScoreAdjustment(BaseModel):
    side: str
    delta: int


class EndGamePayload(BaseModel):
    user_id: str
    summarize: bool = False


class UserPayload(BaseModel):
    username: str
    role: str
    email: str = ""
    team_ids: list[str] = Field(default_factory=list)


class UserUpdate(BaseModel):
    username: str | None = None
    role: str | None = None
    email: str | None = None
    status: str | None = None
    team_ids: list[str] | None = None
    followed_team_ids: list[str] | None = None
    followed_player_ids: list[str] | None = None


class DrillAssignmentPayload(BaseModel):
    coach_id: str
    player_user_id: str
    drill_type: str
    notes: str = ""


class DrillResultsPayload(BaseModel):
    reaction_times: list[int] = Field(default_factory=list)
    shot_history: list[int] = Field(default_factory=list)


class SoundEffectPayload(BaseModel):
    data_url: str | None = None


class ClubService:
    """Process-wide owner of the club manager; built lazily from settings."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._club: ClubManager | None = None

    @property
    def club(self) -> ClubManager:
        if self._club is None:
            settings = get_settings()
            configure_logging(settings.log_level)
            self._club = ClubManager(
                JsonStore(Path(settings.data_path)),
                assistant=get_coach_assistant(),
                seed_demo_data=settings.seed_demo_data,
                tick_interval=1.0,
                lock=self._lock,
            )
            if self._club.last_load_error:
                logger.warning(self._club.last_load_error)
        return self._club

    def use(self, club: ClubManager) -> None:
        if self._club is not None:
            self._club.shutdown()
        club.lock = self._lock
        self._club = club

    def meta(self) -> dict[str, Any]:
        return {
            "stat_types": [s.value for s in StatType],
            "penalty_types": [p.value for p in PenaltyType],
            "penalty_durations": list(PENALTY_DURATION_PRESETS),
            "positions": list(LACROSSE_POSITIONS),
            "roles": [r.value for r in Role],
            "sound_effects": list(CUSTOM_SOUND_NAMES),
            "period_length": PERIOD_LENGTH_SECONDS,
            "sort_keys": list(SEASON_SORT_KEYS),
            "drill": {
                "count_presets": list(DRILL_COUNT_PRESETS),
                "default_timed_minutes": DEFAULT_TIMED_SESSION_MINUTES,
                "video_size": [VIDEO_WIDTH, VIDEO_HEIGHT],
                "sensitivity_threshold": SENSITIVITY_THRESHOLD,
            },
            "ai_enabled": self.club.assistant is not None,
            "last_load_error": self.club.last_load_error,
        }

    @staticmethod
    def player_payload(player: Player) -> dict[str, Any]:
        return {
            "id": player.player_id,
            "name": player.name,
            "jersey_number": player.jersey_number,
            "position": player.position,
            "user_id": player.user_id,
        }

    def team_payload(self, team: Team) -> dict[str, Any]:
        return {"id": team.team_id, "name": team.name, "roster": [self.player_payload(p) for p in team.roster]}

    def game_payload(self, game: Game) -> dict[str, Any]:
        tracker = self.club.tracker(game.game_id)
        return {
            "id": game.game_id,
            "home_team": self.team_payload(game.home_team),
            "away_team": self.team_payload(game.away_team),
            "scheduled_time": game.scheduled_time,
            "status": game.status.value,
            "score": {"home": game.score.home, "away": game.score.away},
            "current_period": game.current_period,
            "game_clock": game.game_clock,
            "clock_display": format_clock(game.game_clock),
            "clock_running": tracker.clock.running,
            "stats": [
                {
                    "id": s.stat_id,
                    "player_id": s.player_id,
                    "team_id": s.team_id,
                    "type": s.type.value,
                    "timestamp": s.timestamp,
                    "assisting_player_id": s.assisting_player_id,
                }
                for s in game.stats
            ],
            "penalties": [
                {
                    "id": p.penalty_id,
                    "player_id": p.player_id,
                    "team_id": p.team_id,
                    "type": p.type.value,
                    "duration": p.duration,
                    "start_time": p.start_time,
                    "release_time": p.release_time,
                }
                for p in game.penalties
            ],
            "ai_summary": game.ai_summary,
        }

    @staticmethod
    def user_payload(user: User) -> dict[str, Any]:
        return {
            "id": user.user_id,
            "username": user.username,
            "email": user.email,
            "role": user.role.value,
            "status": user.status.value,
            "team_ids": list(user.team_ids),
            "followed_team_ids": list(user.followed_team_ids),
            "followed_player_ids": list(user.followed_player_ids),
        }

    @staticmethod
    def assignment_payload(assignment: DrillAssignment) -> dict[str, Any]:
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

    def clock_action(self, game_id: str, action: str, seconds: int | None) -> dict[str, Any]:
        club = self.club
        if action == "start":
            club.start_clock(game_id)
        elif action == "pause":
            club.pause_clock(game_id)
        elif action == "toggle":
            club.toggle_clock(game_id)
        elif action == "tick":
            club.tick(game_id)
        elif action == "adjust":
            if seconds is None:
                raise ValidationError("Clock adjustment needs a number of seconds.")
            club.adjust_clock(game_id, seconds)
        elif action == "reset":
            club.reset_clock(game_id, seconds)
        else:
            raise ValidationError(f"Unknown clock action '{action}'")
        tracker = club.tracker(game_id)
        return {
            "game_clock": tracker.game.game_clock,
            "clock_display": format_clock(tracker.game.game_clock),
            "running": tracker.clock.running,
        }


service = ClubService()
app = FastAPI(title="Lacrosse Tracker API", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_STATUS: tuple[tuple[type[TrackerError], int], ...] = (
    (ValidationError, 400),
    (RosterImportError, 400),
    (PermissionDeniedError, 403),
    (NotFoundError, 404),
    (GameFinishedError, 409),
)


@app.exception_handler(TrackerError)
def tracker_error_handler(_request: Request, exc: TrackerError) -> JSONResponse:
    status = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 400)
    return JSONResponse(status_code=status, content={"detail": str(exc)})


@app.get("/api/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/meta")
def meta() -> dict[str, Any]:
    with service._lock:
        return service.meta()


# Teams


@app.get("/api/teams")
def teams() -> list[dict[str, Any]]:
    with service._lock:
        return [service.team_payload(team) for team in service.club.teams]


@app.post("/api/teams")
def add_team(payload: TeamPayload) -> dict[str, Any]:
    with service._lock:
        return service.team_payload(service.club.add_team(payload.name))


@app.get("/api/teams/{team_id}")
def team(team_id: str) -> dict[str, Any]:
    with service._lock:
        return service.team_payload(service.club.get_team(team_id))


@app.patch("/api/teams/{team_id}")
def rename_team(team_id: str, payload: TeamPayload) -> dict[str, Any]:
    with service._lock:
        return service.team_payload(service.club.rename_team(team_id, payload.name))


@app.delete("/api/teams/{team_id}")
def delete_team(team_id: str) -> dict[str, Any]:
    with service._lock:
        service.club.delete_team(team_id)
        return {"ok": True}


@app.post("/api/teams/{team_id}/players")
def add_player(team_id: str, payload: PlayerPayload) -> dict[str, Any]:
    with service._lock:
        player = service.club.add_player(
            team_id, payload.name, payload.jersey_number, payload.position, user_id=payload.user_id
        )
        return service.player_payload(player)


@app.patch("/api/teams/{team_id}/players/{player_id}")
def update_player(team_id: str, player_id: str, payload: PlayerUpdate) -> dict[str, Any]:
    with service._lock:
        changes = payload.model_dump(exclude_none=True)
        return service.player_payload(service.club.update_player(team_id, player_id, **changes))


@app.delete("/api/teams/{team_id}/players/{player_id}")
def remove_player(team_id: str, player_id: str) -> dict[str, Any]:
    with service._lock:
        service.club.remove_player(team_id, player_id)
        return {"ok": True}


@app.post("/api/teams/{team_id}/roster-import")
def import_roster(team_id: str, payload: RosterImportPayload) -> dict[str, Any]:
    with service._lock:
        added = service.club.import_roster(team_id, payload.text)
        return {"ok": True, "added": [service.player_payload(p) for p in added]}


@app.get("/api/teams/{team_id}/games")
def team_games(team_id: str) -> list[dict[str, Any]]:
    with service._lock:
        return [service.game_payload(g) for g in service.club.games_for_team(team_id)]


# Games


@app.get("/api/games")
def games(status: str = "all") -> list[dict[str, Any]]:
    with service._lock:
        club = service.club
        selectors = {
            "all": lambda: club.games,
            "upcoming": club.upcoming_games,
            "live": club.live_games,
            "finished": club.finished_games,
        }
        selector = selectors.get(status.lower())
        if selector is None:
            raise HTTPException(status_code=400, detail=f"Unknown game status filter '{status}'")
        return [service.game_payload(g) for g in selector()]


@app.post("/api/games")
def add_game(payload: GamePayload) -> dict[str, Any]:
    with service._lock:
        game = service.club.add_game(payload.home_team_id, payload.opponent_name, payload.scheduled_time)
        return service.game_payload(game)


@app.get("/api/games/{game_id}")
def game(game_id: str) -> dict[str, Any]:
    with service._lock:
        return service.game_payload(service.club.get_game(game_id))


@app.delete("/api/games/{game_id}")
def delete_game(game_id: str) -> dict[str, Any]:
    with service._lock:
        service.club.delete_game(game_id)
        return {"ok": True}


@app.post("/api/games/{game_id}/start")
def start_game(game_id: str) -> dict[str, Any]:
    with service._lock:
        return service.game_payload(service.club.start_game(game_id))


@app.post("/api/games/{game_id}/clock")
def clock(game_id: str, payload: ClockAction) -> dict[str, Any]:
    with service._lock:
        return service.clock_action(game_id, payload.action.lower().strip(), payload.seconds)


@app.post("/api/games/{game_id}/period")
def set_period(game_id: str, payload: PeriodSelection) -> dict[str, Any]:
    with service._lock:
        return {"current_period": service.club.set_period(game_id, payload.period)}


@app.post("/api/games/{game_id}/stats")
def record_stat(game_id: str, payload: StatPayload) -> dict[str, Any]:
    with service._lock:
        club = service.club
        club.record_stat(
            game_id,
            payload.player_id,
            payload.team_id,
            payload.type,
            assisting_player_id=payload.assisting_player_id,
        )
        return service.game_payload(club.get_game(game_id))


@app.post("/api/games/{game_id}/penalties")
def record_penalty(game_id: str, payload: PenaltyPayload) -> dict[str, Any]:
    with service._lock:
        club = service.club
        club.record_penalty(game_id, payload.player_id, payload.team_id, payload.type, payload.duration)
        return {"penalty_box": club.tracker(game_id).penalty_box()}


@app.post("/api/games/{game_id}/score")
def adjust_score(game_id: str, payload: ScoreAdjustment) -> dict[str, Any]:
    with service._lock:
        service.club.adjust_score(game_id, payload.side, payload.delta)
        score = service.club.get_game(game_id).score
        return {"home": score.home, "away": score.away}


@app.post("/api/games/{game_id}/end")
def end_game(game_id: str, payload: EndGamePayload) -> dict[str, Any]:
    with service._lock:
        club = service.club
        club.end_game(game_id, payload.user_id)
        if payload.summarize:
            club.generate_summary(game_id)
        return service.game_payload(club.get_game(game_id))


@app.post("/api/games/{game_id}/summary")
def generate_summary(game_id: str) -> dict[str, Any]:
    with service._lock:
        return {"ai_summary": service.club.generate_summary(game_id)}


@app.get("/api/games/{game_id}/box-score")
def game_box_score(game_id: str) -> dict[str, Any]:
    with service._lock:
        return box_score(service.club.get_game(game_id))


@app.get("/api/games/{game_id}/penalty-box")
def penalty_box(game_id: str) -> list[dict[str, Any]]:
    with service._lock:
        return service.club.tracker(game_id).penalty_box()


@app.get("/api/games/{game_id}/log")
def game_log(game_id: str) -> list[dict[str, Any]]:
    with service._lock:
        return [
            {"stat_id": e.stat_id, "timestamp": e.timestamp, "clock": e.clock, "text": e.text}
            for e in service.club.tracker(game_id).game_log()
        ]


# Analytics


@app.get("/api/analytics")
def analytics(sort: str = "name", descending: bool = False) -> list[dict[str, Any]]:
    with service._lock:
        return [line.as_dict() for line in service.club.player_analytics(sort, descending)]


@app.post("/api/analytics/{player_id}/analyze")
def analyze_player(player_id: str) -> dict[str, Any]:
    with service._lock:
        return {"player_id": player_id, "analysis": service.club.analyze_player(player_id)}


# Users


@app.get("/api/users")
def users() -> list[dict[str, Any]]:
    with service._lock:
        return [service.user_payload(u) for u in service.club.users]


@app.post("/api/users")
def add_user(payload: UserPayload) -> dict[str, Any]:
    with service._lock:
        user = service.club.add_user(payload.username, payload.role, email=payload.email, team_ids=payload.team_ids)
        return service.user_payload(user)


@app.patch("/api/users/{user_id}")
def update_user(user_id: str, payload: UserUpdate) -> dict[str, Any]:
    with service._lock:
        changes = payload.model_dump(exclude_none=True)
        return service.user_payload(service.club.update_user(user_id, **changes))


@app.delete("/api/users/{user_id}")
def delete_user(user_id: str) -> dict[str, Any]:
    with service._lock:
        service.club.delete_user(user_id)
        return {"ok": True}


# Drills and sounds


@app.get("/api/drills")
def drills(user_id: str, status: str | None = None) -> list[dict[str, Any]]:
    with service._lock:
        return [service.assignment_payload(a) for a in service.club.assignments_for(user_id, status)]


@app.post("/api/drills")
def assign_drill(payload: DrillAssignmentPayload) -> dict[str, Any]:
    with service._lock:
        assignment = service.club.assign_drill(
            payload.coach_id, payload.player_user_id, payload.drill_type, payload.notes
        )
        return service.assignment_payload(assignment)


@app.post("/api/drills/{assignment_id}/complete")
def complete_drill(assignment_id: str, payload: DrillResultsPayload) -> dict[str, Any]:
    with service._lock:
        assignment = service.club.complete_drill(
            assignment_id, reaction_times=payload.reaction_times, shot_history=payload.shot_history
        )
        return service.assignment_payload(assignment)


@app.get("/api/sound-effects")
def sound_effects() -> dict[str, Any]:
    with service._lock:
        effects = service.club.state.sound_effects
        return {name: name in effects for name in CUSTOM_SOUND_NAMES}


@app.put("/api/sound-effects/{name}")
def set_sound_effect(name: str, payload: SoundEffectPayload) -> dict[str, Any]:
    with service._lock:
        service.club.set_sound_effect(name, payload.data_url)
        return {"ok": True, "name": name, "custom": bool(payload.data_url)}
