import pytest
from fastapi.testclient import TestClient

from fakes import RecordingCuePlayer

from lax_tracker.api import app, service
from lax_tracker.club import ClubManager
from lax_tracker.storage import JsonStore


@pytest.fixture
def client(tmp_path) -> TestClient:
    service.use(ClubManager(JsonStore(tmp_path / "api.json"), cue_player=RecordingCuePlayer(), seed_demo_data=True))
    return TestClient(app)


def _user_id(client: TestClient, role: str) -> str:
    return next(u["id"] for u in client.get("/api/users").json() if u["role"] == role)


def _setup_game(client: TestClient) -> tuple[str, str, str, str]:
    team = client.post("/api/teams", json={"name": "Hawks"}).json()
    scorer = client.post(f"/api/teams/{team['id']}/players", json={"name": "Alex Stone", "jersey_number": "7"}).json()
    feeder = client.post(f"/api/teams/{team['id']}/players", json={"name": "Ben Ruiz", "jersey_number": "9"}).json()
    game = client.post(
        "/api/games",
        json={"home_team_id": team["id"], "opponent_name": "Owls", "scheduled_time": "2024-05-01T18:00"},
    ).json()
    return game["id"], team["id"], scorer["id"], feeder["id"]


def test_health_and_meta(client: TestClient) -> None:
    assert client.get("/api/health").json() == {"status": "ok"}
    meta = client.get("/api/meta").json()
    assert "Ground Ball" in meta["stat_types"]
    assert meta["penalty_durations"] == [30, 60, 90, 120, 180]
    assert meta["ai_enabled"] is False
    assert meta["drill"]["video_size"] == [480, 360]


def test_live_game_over_http(client: TestClient) -> None:
    game_id, team_id, scorer, feeder = _setup_game(client)
    assert [g["id"] for g in client.get(f"/api/teams/{team_id}/games").json()] == [game_id]
    started = client.post(f"/api/games/{game_id}/start").json()
    assert started["status"] == "live"
    assert client.get("/api/games", params={"status": "live"}).json()[0]["id"] == game_id

    clock = client.post(f"/api/games/{game_id}/clock", json={"action": "adjust", "seconds": -20}).json()
    assert clock["clock_display"] == "11:40"

    game = client.post(
        f"/api/games/{game_id}/stats",
        json={"player_id": scorer, "team_id": team_id, "type": "Goal", "assisting_player_id": feeder},
    ).json()
    assert game["score"] == {"home": 1, "away": 0}

    box = client.post(
        f"/api/games/{game_id}/penalties",
        json={"player_id": feeder, "team_id": team_id, "type": "Slashing", "duration": 30},
    ).json()
    assert box["penalty_box"][0]["remaining"] == 30

    log = client.get(f"/api/games/{game_id}/log").json()
    assert log[0]["text"] == "Hawks: #7 Alex Stone - Goal (Assist #9 Ben Ruiz)"
    totals = client.get(f"/api/games/{game_id}/box-score").json()["home"]["totals"]
    assert totals["Points"] == 2

    ended = client.post(f"/api/games/{game_id}/end", json={"user_id": _user_id(client, "Coach")}).json()
    assert ended["status"] == "finished"
    assert ended["game_clock"] == 0

    analytics = client.get("/api/analytics", params={"sort": "Goal", "descending": "true"}).json()
    assert analytics[0]["player_id"] == scorer
    assert analytics[0]["stats"]["Points"] == 1


def test_errors_map_to_status_codes(client: TestClient) -> None:
    game_id, team_id, scorer, _feeder = _setup_game(client)
    assert client.get("/api/games/game_missing").status_code == 404
    bad = client.post(f"/api/games/{game_id}/stats", json={"player_id": scorer, "team_id": team_id, "type": "Dunk"})
    assert bad.status_code == 400
    missing_user = client.post(f"/api/games/{game_id}/end", json={"user_id": "user_missing"})
    assert missing_user.status_code == 404

    parent = client.post(f"/api/games/{game_id}/end", json={"user_id": _user_id(client, "Parent")})
    assert parent.status_code == 403
    client.post(f"/api/games/{game_id}/end", json={"user_id": _user_id(client, "Admin")})
    finished = client.post(f"/api/games/{game_id}/score", json={"side": "home", "delta": 1})
    assert finished.status_code == 409
    assert client.get("/api/games", params={"status": "someday"}).status_code == 400


def test_roster_import_without_ai_is_rejected(client: TestClient) -> None:
    team = client.post("/api/teams", json={"name": "Hawks"}).json()
    response = client.post(f"/api/teams/{team['id']}/roster-import", json={"text": "7 Alex Stone"})
    assert response.status_code == 400
    assert response.json()["detail"] == "AI features are not configured."


def test_drills_and_sound_effects(client: TestClient) -> None:
    coach = _user_id(client, "Coach")
    player = _user_id(client, "Player")
    assignment = client.post(
        "/api/drills", json={"coach_id": coach, "player_user_id": player, "drill_type": "Face-Off"}
    ).json()
    done = client.post(f"/api/drills/{assignment['id']}/complete", json={"reaction_times": [280, 305]}).json()
    assert done["status"] == "Completed"
    assert client.get("/api/drills", params={"user_id": player, "status": "Completed"}).json()[0]["id"] == done["id"]

    ok = client.put("/api/sound-effects/whistle", json={"data_url": "data:audio/wav;base64,UklGRg=="})
    assert ok.json()["custom"] is True
    assert client.get("/api/sound-effects").json() == {"down": False, "set": False, "whistle": True}
    assert client.put("/api/sound-effects/buzzer", json={"data_url": None}).status_code == 400
