"""Unit tests for the HTTP mapping of the ladder operations."""

import pytest
from fastapi import Request
from fastapi.testclient import TestClient

from escalera.web import create_app, get_current_identity


@pytest.fixture
def acting():
    """Mutable holder for the identity the next request runs as."""
    return {"identity": None}


@pytest.fixture
def client(ladder, test_settings, acting):
    app = create_app(ladder.service, test_settings)

    def fake_identity(request: Request):
        request.state.identity = acting["identity"]
        return acting["identity"]

    app.dependency_overrides[get_current_identity] = fake_identity
    return TestClient(app)


def test_requires_login(ladder, test_settings):
    client = TestClient(create_app(ladder.service, test_settings))
    response = client.get(f"/api/groups/{ladder.group_ids()[0]}/party")
    assert response.status_code == 401


def test_report_and_confirm_flow(ladder, client, acting):
    group_id = ladder.group_ids()[0]
    match = ladder.matches(group_id)[0]

    acting["identity"] = ladder.admin
    response = client.post(
        f"/api/groups/{group_id}/party/propose",
        json={"proposed_date": "2026-01-10T18:30:00"},
    )
    assert response.status_code == 200
    assert response.json()["party"]["status"] == "SCHEDULED"

    acting["identity"] = ladder.player(1)
    response = client.post(f"/api/matches/{match.id}/report", json={"team1_games": 4, "team2_games": 2})
    assert response.status_code == 200
    assert response.json()["match"]["status"] == "REPORTED"

    acting["identity"] = ladder.player(2)
    response = client.post(f"/api/matches/{match.id}/confirm")
    assert response.status_code == 200
    assert response.json()["match"]["is_confirmed"] is True

    response = client.get(f"/api/groups/{group_id}/standings")
    assert response.status_code == 200
    standings = response.json()["standings"]
    assert [row["player_id"] for row in standings[:2]] == [1, 4]
    assert standings[0]["points"] == 5


def test_player_errors_hide_the_code(ladder, client, acting):
    match = ladder.matches(ladder.group_ids()[0])[0]
    acting["identity"] = ladder.player(1)

    response = client.post(f"/api/matches/{match.id}/report", json={"team1_games": 4, "team2_games": 2})

    assert response.status_code == 400
    assert "error" in response.json()
    assert "code" not in response.json()


def test_admin_errors_include_the_code(ladder, client, acting):
    acting["identity"] = ladder.admin
    response = client.post(f"/api/admin/rounds/{ladder.round_id()}/close")

    assert response.status_code == 400
    assert response.json()["code"] == "MatchesIncomplete"


def test_invalid_score_is_unprocessable(ladder, client, acting):
    group_id = ladder.group_ids()[0]
    ladder.schedule(group_id)
    match = ladder.matches(group_id)[0]
    acting["identity"] = ladder.player(1)

    response = client.post(
        f"/api/matches/{match.id}/report",
        json={"team1_games": 4, "team2_games": 4, "tiebreak": "6-5"},
    )
    assert response.status_code == 422


def test_non_admin_cannot_close(ladder, client, acting):
    acting["identity"] = ladder.player(1)
    response = client.post(f"/api/admin/rounds/{ladder.round_id()}/close")
    assert response.status_code == 403


def test_close_round_endpoint(ladder, client, acting):
    ladder.play_round(1)
    acting["identity"] = ladder.admin

    response = client.post(f"/api/admin/rounds/{ladder.round_id()}/close")

    assert response.status_code == 200
    result = response.json()["result"]
    assert result["next_round_generated"] is True
    assert len(result["movements"]) == 8

    response = client.post(f"/api/admin/rounds/{ladder.round_id()}/reopen")
    assert response.status_code == 200
    assert response.json()["result"]["groups_reset"] == 2


def test_comodin_endpoints(ladder, client, acting):
    acting["identity"] = ladder.player(1)
    round_id = ladder.round_id()

    response = client.post(f"/api/rounds/{round_id}/comodin", json={"mode": "substitute"})
    assert response.status_code == 400

    response = client.post(
        f"/api/rounds/{round_id}/comodin",
        json={"mode": "substitute", "substitute_player_id": 6},
    )
    assert response.status_code == 200
    assert response.json()["comodin"]["substitute_player_id"] == 6

    response = client.post(f"/api/rounds/{round_id}/comodin", json={"mode": "mean"})
    assert response.status_code == 409

    response = client.post(f"/api/rounds/{round_id}/comodin/revoke")
    assert response.status_code == 200
    assert response.json()["comodin"]["mode"] is None


def test_skip_group_endpoint(ladder, client, acting):
    acting["identity"] = ladder.admin
    group_id = ladder.group_ids()[1]

    response = client.post(f"/api/admin/groups/{group_id}/skip", json={"reason": "lesión"})

    assert response.status_code == 200
    assert response.json()["status"] == "SKIPPED"
    assert response.json()["skipped_reason"] == "lesión"
