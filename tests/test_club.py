import base64
import threading
import time

import pytest

from fakes import FakeCamera, FakeChatClient, FixedRandom, ManualScheduler, RecordingCuePlayer

from lax_tracker.ai import CoachAssistant
from lax_tracker.club import ClubManager
from lax_tracker.config import AI_FALLBACK_ANALYSIS
from lax_tracker.errors import (
    GameFinishedError,
    NotFoundError,
    PermissionDeniedError,
    RosterImportError,
    ValidationError,
)
from lax_tracker.models import DrillStatus, DrillType, GameStatus, Role, StatType, UserStatus
from lax_tracker.storage import JsonStore


def _club(tmp_path, **overrides) -> ClubManager:
    kwargs = {
        "store": JsonStore(tmp_path / "club.json"),
        "cue_player": RecordingCuePlayer(),
        "seed_demo_data": False,
    }
    kwargs.update(overrides)
    return ClubManager(**kwargs)


def _user(club: ClubManager, role: Role):
    return next(user for user in club.users if user.role == role)


def test_first_run_seeds_demo_data(tmp_path) -> None:
    club = _club(tmp_path, seed_demo_data=True)
    assert {user.role for user in club.users} == {Role.ADMIN, Role.COACH, Role.PLAYER, Role.PARENT}
    team = club.teams[0]
    player_user = _user(club, Role.PLAYER)
    assert team.roster[0].user_id == player_user.user_id
    assert _user(club, Role.PARENT).followed_player_ids == [team.roster[0].player_id]

    reloaded = _club(tmp_path, seed_demo_data=True)
    assert len(reloaded.users) == 4
    assert len(reloaded.teams) == 1


def test_team_names_are_unique_ignoring_case(tmp_path) -> None:
    club = _club(tmp_path)
    club.add_team("Hawks")
    with pytest.raises(ValidationError):
        club.add_team("hawks")
    with pytest.raises(ValidationError):
        club.add_team("  ")


def test_roster_rules(tmp_path) -> None:
    club = _club(tmp_path)
    team = club.add_team("Hawks")
    player = club.add_player(team.team_id, "Alex Stone", "7", "Attack")
    with pytest.raises(ValidationError):
        club.add_player(team.team_id, "Other", "7")
    with pytest.raises(ValidationError):
        club.add_player(team.team_id, "", "8")
    club.update_player(team.team_id, player.player_id, position="Midfield")
    assert club.get_team(team.team_id).roster[0].position == "Midfield"
    club.remove_player(team.team_id, player.player_id)
    assert club.get_team(team.team_id).roster == []
    with pytest.raises(NotFoundError):
        club.remove_player(team.team_id, player.player_id)


def test_add_game_creates_missing_opponent(tmp_path) -> None:
    club = _club(tmp_path)
    hawks = club.add_team("Hawks")
    owls = club.add_team("Owls")
    game = club.add_game(hawks.team_id, "OWLS", "2024-05-01T18:00")
    assert game.away_team.team_id == owls.team_id
    assert game.status == GameStatus.SCHEDULED

    club.add_game(hawks.team_id, "Eagles", "2024-05-08T18:00")
    assert [team.name for team in club.teams] == ["Hawks", "Owls", "Eagles"]

    with pytest.raises(ValidationError):
        club.add_game(hawks.team_id, "hawks", "2024-05-08T18:00")
    with pytest.raises(ValidationError):
        club.add_game("", "Owls", "2024-05-08T18:00")
    with pytest.raises(ValidationError):
        club.add_game(hawks.team_id, "Owls", "soon")


def test_game_keeps_roster_snapshot(tmp_path) -> None:
    club = _club(tmp_path)
    hawks = club.add_team("Hawks")
    club.add_player(hawks.team_id, "Alex Stone", "7")
    game = club.add_game(hawks.team_id, "Owls", "2024-05-01T18:00")
    club.add_player(hawks.team_id, "Late Signing", "99")
    assert len(game.home_team.roster) == 1


def test_delete_team_removes_its_games(tmp_path) -> None:
    club = _club(tmp_path)
    hawks = club.add_team("Hawks")
    game = club.add_game(hawks.team_id, "Owls", "2024-05-01T18:00")
    club.start_game(game.game_id)
    club.delete_team(hawks.team_id)
    assert club.games == []
    assert club.active_game is None
    with pytest.raises(NotFoundError):
        club.get_game(game.game_id)


def _live_game(club: ClubManager):
    hawks = club.add_team("Hawks")
    scorer = club.add_player(hawks.team_id, "Alex Stone", "7")
    feeder = club.add_player(hawks.team_id, "Ben Ruiz", "9")
    game = club.add_game(hawks.team_id, "Owls", "2024-05-01T18:00")
    club.start_game(game.game_id)
    return game, hawks, scorer, feeder


def test_live_game_flow_persists(tmp_path) -> None:
    club = _club(tmp_path, seed_demo_data=True)
    game, hawks, scorer, feeder = _live_game(club)
    club.start_clock(game.game_id)
    for _ in range(30):
        club.tick(game.game_id)
    club.record_stat(game.game_id, scorer.player_id, hawks.team_id, StatType.GOAL, assisting_player_id=feeder.player_id)
    club.record_penalty(game.game_id, feeder.player_id, hawks.team_id, "Tripping", 60)
    club.adjust_score(game.game_id, "away", 1)

    coach = _user(club, Role.COACH)
    club.end_game(game.game_id, coach.user_id)
    assert club.finished_games()[0].game_id == game.game_id

    reloaded = _club(tmp_path)
    saved = reloaded.get_game(game.game_id)
    assert saved.status == GameStatus.FINISHED
    assert (saved.score.home, saved.score.away) == (1, 1)
    assert saved.stats[0].timestamp == 690
    assert saved.penalties[0].release_time == 630
    assert reloaded.state.active_game_id is None


def test_end_game_permissions(tmp_path) -> None:
    club = _club(tmp_path, seed_demo_data=True)
    game, *_rest = _live_game(club)
    with pytest.raises(PermissionDeniedError):
        club.end_game(game.game_id, _user(club, Role.PARENT).user_id)
    with pytest.raises(NotFoundError):
        club.end_game(game.game_id, "user_missing")
    club.end_game(game.game_id, _user(club, Role.ADMIN).user_id)
    with pytest.raises(GameFinishedError):
        club.adjust_clock(game.game_id, 10)


def test_summary_only_for_finished_games(tmp_path) -> None:
    client = FakeChatClient(replies=["Hawks edge Owls."])
    club = _club(tmp_path, seed_demo_data=True, assistant=CoachAssistant(client))
    game, *_rest = _live_game(club)
    with pytest.raises(ValidationError):
        club.generate_summary(game.game_id)
    club.end_game(game.game_id, _user(club, Role.COACH).user_id)
    assert club.generate_summary(game.game_id) == "Hawks edge Owls."
    assert _club(tmp_path).get_game(game.game_id).ai_summary == "Hawks edge Owls."


def test_import_roster(tmp_path, roster_reply: str) -> None:
    club = _club(tmp_path, assistant=CoachAssistant(FakeChatClient(replies=[roster_reply])))
    team = club.add_team("Hawks")
    club.add_player(team.team_id, "Existing", "22")
    added = club.import_roster(team.team_id, "pasted roster")
    assert [p.name for p in added] == ["Casey Hart"]
    assert len(club.get_team(team.team_id).roster) == 2

    with pytest.raises(RosterImportError):
        _club(tmp_path).import_roster(team.team_id, "pasted roster")


def test_users_crud(tmp_path) -> None:
    club = _club(tmp_path)
    user = club.add_user("Jamie", "Coach", email="jamie@example.com")
    with pytest.raises(ValidationError):
        club.add_user("JAMIE", Role.FAN)
    with pytest.raises(ValidationError):
        club.add_user("Robin", "Wizard")
    club.update_user(user.user_id, role="Admin", followed_team_ids=["t1"])
    assert club.get_user(user.user_id).role == Role.ADMIN
    with pytest.raises(ValidationError):
        club.update_user(user.user_id, password="secret")
    club.delete_user(user.user_id)
    with pytest.raises(NotFoundError):
        club.get_user(user.user_id)


def test_blocked_coach_loses_staff_rights(tmp_path) -> None:
    club = _club(tmp_path, seed_demo_data=True)
    coach = _user(club, Role.COACH)
    club.update_user(coach.user_id, status="blocked")
    assert coach.status == UserStatus.BLOCKED
    assert not coach.is_staff
    with pytest.raises(PermissionDeniedError):
        club.assign_drill(coach.user_id, _user(club, Role.PLAYER).user_id, DrillType.FACE_OFF)
    game, *_rest = _live_game(club)
    with pytest.raises(PermissionDeniedError):
        club.end_game(game.game_id, coach.user_id)
    with pytest.raises(ValidationError):
        club.update_user(coach.user_id, status="pending")

    reloaded = _club(tmp_path)
    assert reloaded.get_user(coach.user_id).status == UserStatus.BLOCKED
    reloaded.update_user(coach.user_id, status=UserStatus.ACTIVE)
    assert reloaded.get_user(coach.user_id).is_staff


def test_drill_assignment_lifecycle(tmp_path) -> None:
    club = _club(tmp_path, seed_demo_data=True)
    coach = _user(club, Role.COACH)
    player = _user(club, Role.PLAYER)
    with pytest.raises(PermissionDeniedError):
        club.assign_drill(_user(club, Role.PARENT).user_id, player.user_id, DrillType.FACE_OFF)

    assignment = club.assign_drill(coach.user_id, player.user_id, "Shooting", notes="Top corners")
    assert club.assignments_for(player.user_id, DrillStatus.ASSIGNED) == [assignment]
    club.complete_drill(assignment.assignment_id, shot_history=[0, 2, 8])
    done = club.assignments_for(player.user_id, "Completed")
    assert done[0].results.shot_history == [0, 2, 8]
    assert done[0].completed_date is not None


def test_assigned_face_off_drill_completes_assignment(tmp_path) -> None:
    club = _club(tmp_path, seed_demo_data=True)
    assignment = club.assign_drill(
        _user(club, Role.COACH).user_id, _user(club, Role.PLAYER).user_id, DrillType.FACE_OFF
    )
    camera = FakeCamera()
    scheduler = ManualScheduler()
    club.start_assigned_drill(
        assignment.assignment_id, camera, scheduler=scheduler, rng=FixedRandom(500), now=scheduler.now
    )
    scheduler.advance(6.25)
    camera.moving = True
    scheduler.advance(0.1)

    saved = _club(tmp_path).get_assignment(assignment.assignment_id)
    assert saved.status == DrillStatus.COMPLETED
    assert len(saved.results.reaction_times) == 1


def test_cancelling_drill_while_holding_club_lock(tmp_path) -> None:
    club = _club(tmp_path, seed_demo_data=True)
    assignment = club.assign_drill(
        _user(club, Role.COACH).user_id, _user(club, Role.PLAYER).user_id, DrillType.FACE_OFF
    )
    camera = FakeCamera()
    scheduler = ManualScheduler()
    drill = club.start_assigned_drill(
        assignment.assignment_id, camera, scheduler=scheduler, rng=FixedRandom(500), now=scheduler.now
    )
    scheduler.advance(6.25)
    camera.moving = True

    locked = threading.Event()
    release = threading.Event()

    def hold_lock_and_cancel() -> None:
        with club.lock:
            locked.set()
            release.wait(timeout=2.0)
            drill.cancel()

    holder = threading.Thread(target=hold_lock_and_cancel, daemon=True)
    holder.start()
    assert locked.wait(timeout=2.0)
    poller = threading.Thread(target=scheduler.advance, args=(0.1,), daemon=True)
    poller.start()
    time.sleep(0.1)
    release.set()

    holder.join(timeout=2.0)
    poller.join(timeout=2.0)
    assert not holder.is_alive()
    assert not poller.is_alive()
    assert not camera.is_open
    assert club.get_assignment(assignment.assignment_id).status == DrillStatus.ASSIGNED


def test_sound_effects(tmp_path) -> None:
    club = _club(tmp_path)
    data = "data:audio/wav;base64," + base64.b64encode(b"RIFF").decode()
    club.set_sound_effect("whistle", data)
    assert club.sound_board.resolve("whistle").clip == b"RIFF"
    with pytest.raises(ValidationError):
        club.set_sound_effect("buzzer", data)
    with pytest.raises(ValidationError):
        club.set_sound_effect("set", "data:audio/wav;base64,%%%")
    club.set_sound_effect("whistle", None)
    assert club.state.sound_effects == {}


def test_player_analytics_and_analysis(tmp_path) -> None:
    client = FakeChatClient(replies=["Keep shooting."])
    club = _club(tmp_path, seed_demo_data=True, assistant=CoachAssistant(client))
    game, hawks, scorer, feeder = _live_game(club)
    club.record_stat(game.game_id, scorer.player_id, hawks.team_id, StatType.GOAL, assisting_player_id=feeder.player_id)
    club.end_game(game.game_id, _user(club, Role.COACH).user_id)

    lines = club.player_analytics("Goal", descending=True)
    assert lines[0].player_id == scorer.player_id
    assert lines[0].games_played == 1
    with pytest.raises(ValidationError):
        club.player_analytics("height")

    assert club.analyze_player(scorer.player_id) == "Keep shooting."
    assert "- Goal: 1" in client.calls[0]["messages"][0]["content"]
    with pytest.raises(NotFoundError):
        club.analyze_player("player_missing")
    assert _club(tmp_path).analyze_player(scorer.player_id) == AI_FALLBACK_ANALYSIS
