from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Iterable

from . import schedule
from .aggregate import SeasonLine, season_aggregate, sort_season_lines
from .ai import CoachAssistant, PlayerAnalysis
from .app import build_sample_state
from .audio import CuePlayer, LoggingCuePlayer, SoundBoard, decode_sound_clip
from .clock import ClockTicker
from .config import AI_FALLBACK_ANALYSIS, AI_FALLBACK_SUMMARY, CUSTOM_SOUND_NAMES, LACROSSE_POSITIONS
from .drill import FrameSource, ReactionDrill, Scheduler, SessionConfig
from .errors import NotFoundError, PermissionDeniedError, RosterImportError, ValidationError
from .models import (
    DrillAssignment,
    DrillResults,
    DrillStatus,
    DrillType,
    Game,
    Penalty,
    PenaltyType,
    Player,
    Role,
    Stat,
    StatType,
    Team,
    User,
    UserStatus,
)
from .storage import JsonStore
from .tracker import GameTracker

logger = logging.getLogger(__name__)

USER_FIELDS = {"username", "email", "role", "team_ids", "followed_team_ids", "followed_player_ids", "status"}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ClubManager:
    """Owns the club's application state and saves it after every change.

    ``lock`` guards the state; background clock ticks and drill completions
    take it too, so callers sharing the manager across threads should hold it
    around each operation. ``tick_interval`` enables background clock ticking;
    leave it ``None`` to drive the clock by hand.
    """

    def __init__(
        self,
        store: JsonStore,
        assistant: CoachAssistant | None = None,
        cue_player: CuePlayer | None = None,
        seed_demo_data: bool = True,
        tick_interval: float | None = None,
        lock: threading.RLock | None = None,
    ) -> None:
        self.store = store
        self.assistant = assistant
        self.tick_interval = tick_interval
        self.lock = lock or threading.RLock()
        self.state = store.load()
        self.last_load_error = store.last_load_error
        self.sound_board = SoundBoard(self.state.sound_effects)
        self.cue_player: CuePlayer = cue_player or LoggingCuePlayer(self.sound_board)
        self._trackers: dict[str, GameTracker] = {}
        self._tickers: dict[str, ClockTicker] = {}

        if seed_demo_data and not self.state.users:
            sample = build_sample_state()
            self.state.users = sample.users
            self.state.teams.extend(sample.teams)
            logger.info("seeded %d users and %d teams", len(sample.users), len(sample.teams))
            self.save()

    def save(self) -> bool:
        return self.store.save(self.state)

    def shutdown(self) -> None:
        for ticker in self._tickers.values():
            ticker.stop()
        self._tickers.clear()

    # Teams and rosters

    @property
    def teams(self) -> list[Team]:
        return list(self.state.teams)

    def get_team(self, team_id: str) -> Team:
        for team in self.state.teams:
            if team.team_id == team_id:
                return team
        raise NotFoundError(f"Team {team_id} not found.")

    def _check_team_name(self, name: str, exclude_id: str | None = None) -> str:
        name = name.strip()
        if not name:
            raise ValidationError("Team name is required.")
        existing = schedule.find_team_by_name(self.state.teams, name)
        if existing is not None and existing.team_id != exclude_id:
            raise ValidationError(f"A team named {existing.name!r} already exists.")
        return name

    def add_team(self, name: str) -> Team:
        team = Team(name=self._check_team_name(name))
        self.state.teams.append(team)
        self.save()
        return team

    def rename_team(self, team_id: str, name: str) -> Team:
        team = self.get_team(team_id)
        team.name = self._check_team_name(name, exclude_id=team_id)
        self.save()
        return team

    def delete_team(self, team_id: str) -> None:
        team = self.get_team(team_id)
        for game in [g for g in self.state.games if g.involves_team(team_id)]:
            self._drop_game(game.game_id)
        self.state.teams.remove(team)
        for user in self.state.users:
            user.team_ids = [tid for tid in user.team_ids if tid != team_id]
            user.followed_team_ids = [tid for tid in user.followed_team_ids if tid != team_id]
        logger.info("deleted team %s", team.name)
        self.save()

    def _build_player(self, team: Team, name: str, jersey_number: str, position: str, user_id: str | None) -> Player:
        name = name.strip()
        jersey_number = str(jersey_number).strip()
        if not name or not jersey_number:
            raise ValidationError("Player name and jersey number are required.")
        if any(p.jersey_number == jersey_number for p in team.roster):
            raise ValidationError(f"Jersey #{jersey_number} is already taken on {team.name}.")
        return Player(name=name, jersey_number=jersey_number, position=position.strip(), user_id=user_id)

    def add_player(
        self,
        team_id: str,
        name: str,
        jersey_number: str,
        position: str = "",
        user_id: str | None = None,
    ) -> Player:
        team = self.get_team(team_id)
        if user_id is not None:
            self.get_user(user_id)
        player = self._build_player(team, name, jersey_number, position, user_id)
        team.roster.append(player)
        self.save()
        return player

    def update_player(self, team_id: str, player_id: str, **changes: Any) -> Player:
        team = self.get_team(team_id)
        player = team.find_player(player_id)
        if player is None:
            raise NotFoundError(f"Player {player_id} not found on {team.name}.")
        if "name" in changes:
            name = str(changes["name"]).strip()
            if not name:
                raise ValidationError("Player name is required.")
            player.name = name
        if "jersey_number" in changes:
            jersey = str(changes["jersey_number"]).strip()
            if not jersey:
                raise ValidationError("Jersey number is required.")
            if any(p.jersey_number == jersey and p.player_id != player_id for p in team.roster):
                raise ValidationError(f"Jersey #{jersey} is already taken on {team.name}.")
            player.jersey_number = jersey
        if "position" in changes:
            player.position = str(changes["position"] or "").strip()
        self.save()
        return player

    def remove_player(self, team_id: str, player_id: str) -> None:
        team = self.get_team(team_id)
        player = team.find_player(player_id)
        if player is None:
            raise NotFoundError(f"Player {player_id} not found on {team.name}.")
        team.roster.remove(player)
        self.save()

    def import_roster(self, team_id: str, text: str) -> list[Player]:
        team = self.get_team(team_id)
        if self.assistant is None:
            raise RosterImportError("AI features are not configured.")
        records = self.assistant.extract_roster(text)
        added: list[Player] = []
        for record in records:
            try:
                player = self._build_player(team, record.name, record.jersey_number, record.position, None)
            except ValidationError as exc:
                logger.warning("skipping imported player %r: %s", record.name, exc)
                continue
            team.roster.append(player)
            added.append(player)
        logger.info("imported %d of %d players into %s", len(added), len(records), team.name)
        self.save()
        return added

    @staticmethod
    def positions() -> tuple[str, ...]:
        return LACROSSE_POSITIONS

    # Schedule

    @property
    def games(self) -> list[Game]:
        return list(self.state.games)

    def get_game(self, game_id: str) -> Game:
        for game in self.state.games:
            if game.game_id == game_id:
                return game
        raise NotFoundError(f"Game {game_id} not found.")

    def add_game(self, home_team_id: str, opponent_name: str, scheduled_time: str) -> Game:
        if not home_team_id:
            raise ValidationError("Home team is required.")
        home = self.get_team(home_team_id)
        schedule.validate_matchup(home, opponent_name)
        schedule.parse_scheduled_time(scheduled_time)

        away = schedule.find_team_by_name(self.state.teams, opponent_name)
        if away is None:
            away = Team(name=opponent_name.strip())
            self.state.teams.append(away)
            logger.info("created opponent team %s", away.name)

        game = Game(home_team=home.snapshot(), away_team=away.snapshot(), scheduled_time=scheduled_time.strip())
        self.state.games.append(game)
        self.save()
        return game

    def _drop_game(self, game_id: str) -> None:
        ticker = self._tickers.pop(game_id, None)
        if ticker is not None:
            ticker.stop(wait=False)
        self._trackers.pop(game_id, None)
        self.state.games = [g for g in self.state.games if g.game_id != game_id]
        if self.state.active_game_id == game_id:
            self.state.active_game_id = None

    def delete_game(self, game_id: str) -> None:
        self.get_game(game_id)
        self._drop_game(game_id)
        self.save()

    def upcoming_games(self) -> list[Game]:
        return schedule.upcoming_games(self.state.games)

    def finished_games(self) -> list[Game]:
        return schedule.finished_games(self.state.games)

    def live_games(self) -> list[Game]:
        return schedule.live_games(self.state.games)

    def games_for_team(self, team_id: str) -> list[Game]:
        self.get_team(team_id)
        return schedule.games_for_team(self.state.games, team_id)

    # Live game

    def tracker(self, game_id: str) -> GameTracker:
        tracker = self._trackers.get(game_id)
        if tracker is None:
            tracker = GameTracker(self.get_game(game_id), cue_player=self.cue_player)
            self._trackers[game_id] = tracker
        return tracker

    @property
    def active_game(self) -> Game | None:
        if self.state.active_game_id is None:
            return None
        try:
            return self.get_game(self.state.active_game_id)
        except NotFoundError:
            return None

    def start_game(self, game_id: str) -> Game:
        tracker = self.tracker(game_id)
        tracker.start()
        self.state.active_game_id = game_id
        self.save()
        return tracker.game

    def start_clock(self, game_id: str) -> int:
        tracker = self.tracker(game_id)
        remaining = tracker.start_clock()
        if tracker.clock.running:
            self._ensure_ticker(game_id, tracker)
        self.save()
        return remaining

    def pause_clock(self, game_id: str) -> int:
        remaining = self.tracker(game_id).pause_clock()
        self.save()
        return remaining

    def toggle_clock(self, game_id: str) -> bool:
        tracker = self.tracker(game_id)
        running = tracker.toggle_clock()
        if running:
            self._ensure_ticker(game_id, tracker)
        self.save()
        return running

    def tick(self, game_id: str) -> int:
        remaining = self.tracker(game_id).tick()
        self.store.save(self.state, with_backup=False)
        return remaining

    def adjust_clock(self, game_id: str, delta_seconds: int) -> int:
        remaining = self.tracker(game_id).adjust_clock(delta_seconds)
        self.save()
        return remaining

    def reset_clock(self, game_id: str, value: int | None = None) -> int:
        remaining = self.tracker(game_id).reset_clock(value)
        self.save()
        return remaining

    def set_period(self, game_id: str, period: int) -> int:
        value = self.tracker(game_id).set_period(period)
        self.save()
        return value

    def _ensure_ticker(self, game_id: str, tracker: GameTracker) -> None:
        if self.tick_interval is None:
            return
        ticker = self._tickers.get(game_id)
        if ticker is not None and ticker.alive:
            return

        def _on_tick(remaining: int) -> None:
            tracker.game.game_clock = remaining
            # Routine per-second autosave skips the backup copy.
            self.store.save(self.state, with_backup=False)

        ticker = ClockTicker(tracker.clock, on_tick=_on_tick, interval=self.tick_interval, lock=self.lock)
        self._tickers[game_id] = ticker
        ticker.start()

    def record_stat(
        self,
        game_id: str,
        player_id: str,
        team_id: str,
        stat_type: StatType | str,
        assisting_player_id: str | None = None,
        timestamp: int | None = None,
    ) -> Stat:
        stat = self.tracker(game_id).record_stat(
            player_id, team_id, stat_type, timestamp=timestamp, assisting_player_id=assisting_player_id
        )
        self.save()
        return stat

    def adjust_score(self, game_id: str, side: str, delta: int) -> int:
        value = self.tracker(game_id).adjust_score(side, delta)
        self.save()
        return value

    def record_penalty(
        self,
        game_id: str,
        player_id: str,
        team_id: str,
        penalty_type: PenaltyType | str,
        duration: int,
    ) -> Penalty:
        penalty = self.tracker(game_id).record_penalty(player_id, team_id, penalty_type, duration)
        self.save()
        return penalty

    def end_game(self, game_id: str, user_id: str) -> Game:
        user = self.get_user(user_id)
        tracker = self.tracker(game_id)
        tracker.end(user)
        ticker = self._tickers.pop(game_id, None)
        if ticker is not None:
            ticker.stop(wait=False)
        if self.state.active_game_id == game_id:
            self.state.active_game_id = None
        self.save()
        return tracker.game

    def generate_summary(self, game_id: str) -> str:
        game = self.get_game(game_id)
        if not game.is_finished:
            raise ValidationError("Summaries are only available for finished games.")
        summary = self.assistant.summarize(game) if self.assistant is not None else AI_FALLBACK_SUMMARY
        self.tracker(game_id).attach_summary(summary)
        self.save()
        return summary

    # Users

    @property
    def users(self) -> list[User]:
        return list(self.state.users)

    def get_user(self, user_id: str) -> User:
        for user in self.state.users:
            if user.user_id == user_id:
                return user
        raise NotFoundError(f"User {user_id} not found.")

    def _check_username(self, username: str, exclude_id: str | None = None) -> str:
        username = username.strip()
        if not username:
            raise ValidationError("Username is required.")
        for user in self.state.users:
            if user.username.lower() == username.lower() and user.user_id != exclude_id:
                raise ValidationError(f"Username {username!r} is already taken.")
        return username

    @staticmethod
    def _coerce_role(value: Role | str) -> Role:
        try:
            return value if isinstance(value, Role) else Role(value)
        except ValueError:
            raise ValidationError(f"Unknown role: {value!r}") from None

    @staticmethod
    def _coerce_status(value: UserStatus | str) -> UserStatus:
        try:
            return value if isinstance(value, UserStatus) else UserStatus(value)
        except ValueError:
            raise ValidationError(f"Unknown status: {value!r}") from None

    def add_user(
        self,
        username: str,
        role: Role | str,
        email: str = "",
        team_ids: Iterable[str] = (),
    ) -> User:
        user = User(
            username=self._check_username(username),
            role=self._coerce_role(role),
            email=email.strip(),
            team_ids=list(team_ids),
        )
        self.state.users.append(user)
        self.save()
        return user

    def update_user(self, user_id: str, **changes: Any) -> User:
        user = self.get_user(user_id)
        unknown = set(changes) - USER_FIELDS
        if unknown:
            raise ValidationError(f"Unknown user fields: {', '.join(sorted(unknown))}")
        if "username" in changes:
            user.username = self._check_username(str(changes["username"]), exclude_id=user_id)
        if "role" in changes:
            user.role = self._coerce_role(changes["role"])
        if "status" in changes:
            user.status = self._coerce_status(changes["status"])
        if "email" in changes:
            user.email = str(changes["email"] or "").strip()
        for key in ("team_ids", "followed_team_ids", "followed_player_ids"):
            if key in changes:
                setattr(user, key, [str(v) for v in changes[key] or []])
        self.save()
        return user

    def delete_user(self, user_id: str) -> None:
        user = self.get_user(user_id)
        self.state.users.remove(user)
        for team in self.state.teams:
            for player in team.roster:
                if player.user_id == user_id:
                    player.user_id = None
        self.save()

    # Drills

    def assign_drill(self, coach_id: str, player_user_id: str, drill_type: DrillType | str, notes: str = "") -> DrillAssignment:
        coach = self.get_user(coach_id)
        if not coach.is_staff:
            raise PermissionDeniedError(f"{coach.username} is not allowed to assign drills.")
        self.get_user(player_user_id)
        try:
            drill_type = drill_type if isinstance(drill_type, DrillType) else DrillType(drill_type)
        except ValueError:
            raise ValidationError(f"Unknown drill type: {drill_type!r}") from None
        assignment = DrillAssignment(
            assigning_coach_id=coach.user_id,
            player_id=player_user_id,
            drill_type=drill_type,
            assigned_date=_now_iso(),
            notes=notes.strip(),
        )
        self.state.drill_assignments.append(assignment)
        self.save()
        return assignment

    def get_assignment(self, assignment_id: str) -> DrillAssignment:
        for assignment in self.state.drill_assignments:
            if assignment.assignment_id == assignment_id:
                return assignment
        raise NotFoundError(f"Drill assignment {assignment_id} not found.")

    def complete_drill(
        self,
        assignment_id: str,
        reaction_times: Iterable[int] = (),
        shot_history: Iterable[int] = (),
    ) -> DrillAssignment:
        assignment = self.get_assignment(assignment_id)
        assignment.status = DrillStatus.COMPLETED
        assignment.completed_date = _now_iso()
        assignment.results = DrillResults(
            reaction_times=[int(v) for v in reaction_times],
            shot_history=[int(v) for v in shot_history],
        )
        self.save()
        return assignment

    def assignments_for(self, user_id: str, status: DrillStatus | str | None = None) -> list[DrillAssignment]:
        try:
            wanted = DrillStatus(status) if status is not None else None
        except ValueError:
            raise ValidationError(f"Unknown drill status: {status!r}") from None
        return [
            a
            for a in self.state.drill_assignments
            if a.player_id == user_id and (wanted is None or a.status == wanted)
        ]

    def start_assigned_drill(
        self,
        assignment_id: str,
        frame_source: FrameSource,
        scheduler: Scheduler | None = None,
        **drill_options: Any,
    ) -> ReactionDrill:
        """Run a face-off assignment; the session result completes the assignment."""
        assignment = self.get_assignment(assignment_id)
        if assignment.drill_type != DrillType.FACE_OFF:
            raise ValidationError(f"{assignment.drill_type.value} drills are not measured by the camera drill.")
        if assignment.status == DrillStatus.COMPLETED:
            raise ValidationError("This drill has already been completed.")

        def _complete(times: list[int]) -> None:
            self.complete_drill(assignment_id, reaction_times=times)

        drill = ReactionDrill(
            frame_source,
            cue_player=self.cue_player,
            scheduler=scheduler,
            on_session_complete=_complete,
            lock=self.lock,
            **drill_options,
        )
        drill.begin_session(SessionConfig(kind="count", value=1))
        return drill

    # Sound effects

    def set_sound_effect(self, name: str, data_url: str | None) -> None:
        if name not in CUSTOM_SOUND_NAMES:
            raise ValidationError(f"Unknown sound effect: {name!r}")
        if data_url:
            try:
                decode_sound_clip(data_url)
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc
            self.state.sound_effects[name] = data_url
        else:
            self.state.sound_effects.pop(name, None)
        self.sound_board.sound_effects = dict(self.state.sound_effects)
        self.save()

    # Analytics

    def player_analytics(self, sort_key: str = "name", descending: bool = False) -> list[SeasonLine]:
        lines = season_aggregate(self.state.teams, self.state.games)
        try:
            return sort_season_lines(lines, sort_key, descending)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

    def analyze_player(self, player_id: str) -> str:
        for line in season_aggregate(self.state.teams, self.state.games):
            if line.player_id == player_id:
                break
        else:
            raise NotFoundError(f"Player {player_id} not found.")
        if self.assistant is None:
            return AI_FALLBACK_ANALYSIS
        data = PlayerAnalysis(
            name=line.name,
            position=line.position or "N/A",
            total_games=line.games_played,
            stats={stat.value: count for stat, count in line.stats.counts.items() if count},
        )
        return self.assistant.analyze_performance(data)
