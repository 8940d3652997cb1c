from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from uuid import uuid4

from .config import PERIOD_LENGTH_SECONDS


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"


class StatType(str, Enum):
    GOAL = "Goal"
    ASSIST = "Assist"
    SHOT = "Shot"
    SAVE = "Save"
    GROUND_BALL = "Ground Ball"
    TURNOVER = "Turnover"
    CAUSED_TURNOVER = "Caused Turnover"
    FACEOFF_WIN = "Faceoff Win"
    FACEOFF_LOSS = "Faceoff Loss"


class PenaltyType(str, Enum):
    SLASHING = "Slashing"
    TRIPPING = "Tripping"
    CROSS_CHECK = "Cross Check"
    UNSPORTSMANLIKE_CONDUCT = "Unsportsmanlike Conduct"
    ILLEGAL_BODY_CHECK = "Illegal Body Check"
    HOLDING = "Holding"
    INTERFERENCE = "Interference"
    ILLEGAL_PROCEDURE = "Illegal Procedure"
    PUSHING = "Pushing"
    OFFSIDES = "Offsides"
    WARDING = "Warding"
    ILLEGAL_STICK = "Illegal Stick"


class GameStatus(str, Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    FINISHED = "finished"


class Role(str, Enum):
    ADMIN = "Admin"
    COACH = "Coach"
    PARENT = "Parent"
    PLAYER = "Player"
    FAN = "Fan"


STAFF_ROLES = {Role.ADMIN, Role.COACH}


class UserStatus(str, Enum):
    ACTIVE = "active"
    BLOCKED = "blocked"


class DrillType(str, Enum):
    FACE_OFF = "Face-Off"
    SHOOTING = "Shooting"


class DrillStatus(str, Enum):
    ASSIGNED = "Assigned"
    COMPLETED = "Completed"


@dataclass(slots=True)
class Player:
    name: str
    jersey_number: str
    position: str = ""
    user_id: str | None = None
    player_id: str = field(default_factory=lambda: new_id("player"))


@dataclass(slots=True)
class Team:
    name: str
    roster: list[Player] = field(default_factory=list)
    team_id: str = field(default_factory=lambda: new_id("team"))

    def find_player(self, player_id: str) -> Player | None:
        for player in self.roster:
            if player.player_id == player_id:
                return player
        return None

    def has_player(self, player_id: str) -> bool:
        return self.find_player(player_id) is not None

    def snapshot(self) -> Team:
        """Detached copy embedded in a game so later roster edits leave history alone."""
        return copy.deepcopy(self)


@dataclass(slots=True)
class Score:
    home: int = 0
    away: int = 0


@dataclass(slots=True)
class Stat:
    player_id: str
    team_id: str
    type: StatType
    timestamp: int
    assisting_player_id: str | None = None
    stat_id: str = field(default_factory=lambda: new_id("stat"))


@dataclass(slots=True)
class Penalty:
    player_id: str
    team_id: str
    type: PenaltyType
    duration: int
    start_time: int
    release_time: int
    penalty_id: str = field(default_factory=lambda: new_id("penalty"))


@dataclass(slots=True)
class Game:
    home_team: Team
    away_team: Team
    scheduled_time: str
    status: GameStatus = GameStatus.SCHEDULED
    score: Score = field(default_factory=Score)
    stats: list[Stat] = field(default_factory=list)
    penalties: list[Penalty] = field(default_factory=list)
    current_period: int = 1
    game_clock: int = PERIOD_LENGTH_SECONDS
    ai_summary: str | None = None
    game_id: str = field(default_factory=lambda: new_id("game"))

    @property
    def is_finished(self) -> bool:
        return self.status == GameStatus.FINISHED

    @property
    def is_live(self) -> bool:
        return self.status == GameStatus.LIVE

    def all_players(self) -> list[Player]:
        return [*self.home_team.roster, *self.away_team.roster]

    def find_player(self, player_id: str) -> Player | None:
        return self.home_team.find_player(player_id) or self.away_team.find_player(player_id)

    def team_by_id(self, team_id: str) -> Team | None:
        if team_id == self.home_team.team_id:
            return self.home_team
        if team_id == self.away_team.team_id:
            return self.away_team
        return None

    def team_for_player(self, player_id: str) -> Team | None:
        if self.home_team.has_player(player_id):
            return self.home_team
        if self.away_team.has_player(player_id):
            return self.away_team
        return None

    def involves_team(self, team_id: str) -> bool:
        return team_id in {self.home_team.team_id, self.away_team.team_id}


@dataclass(slots=True)
class User:
    username: str
    role: Role
    email: str = ""
    team_ids: list[str] = field(default_factory=list)
    followed_team_ids: list[str] = field(default_factory=list)
    followed_player_ids: list[str] = field(default_factory=list)
    status: UserStatus = UserStatus.ACTIVE
    user_id: str = field(default_factory=lambda: new_id("user"))

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES and self.status == UserStatus.ACTIVE


@dataclass(slots=True)
class DrillResults:
    reaction_times: list[int] = field(default_factory=list)
    shot_history: list[int] = field(default_factory=list)


@dataclass(slots=True)
class DrillAssignment:
    assigning_coach_id: str
    player_id: str
    drill_type: DrillType
    assigned_date: str
    notes: str = ""
    status: DrillStatus = DrillStatus.ASSIGNED
    completed_date: str | None = None
    results: DrillResults | None = None
    assignment_id: str = field(default_factory=lambda: new_id("drill"))


@dataclass(slots=True)
class AppState:
    teams: list[Team] = field(default_factory=list)
    games: list[Game] = field(default_factory=list)
    users: list[User] = field(default_factory=list)
    drill_assignments: list[DrillAssignment] = field(default_factory=list)
    sound_effects: dict[str, str] = field(default_factory=dict)
    active_game_id: str | None = None
