"""API tests for the predictions routes."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.asyncio

BASE = "/api/v1/predictions"


async def _create(client: AsyncClient, admin_headers: dict[str, str], **overrides) -> dict:
    body = {"title": "Will it rain?", "options": ["Yes", "No"], **overrides}
    response = await client.post(BASE, json=body, headers=admin_headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestCreate:
    async def test_create(self, client, admin_headers):
        data = await _create(client, admin_headers, category="weather", points_pool=250)
        assert data["status"] == "open"
        assert data["category"] == "weather"
        assert data["points_pool"] == 250
        assert data["created_by"] == "admin-1"
        assert [o["text"] for o in data["options"]] == ["Yes", "No"]

    async def test_create_with_explicit_option_ids(self, client, admin_headers):
        data = await _create(
            client, admin_headers, options=[{"id": "y", "text": "Yes"}, {"id": "n", "text": "No"}]
        )
        assert [o["id"] for o in data["options"]] == ["y", "n"]

    async def test_requires_auth(self, client):
        response = await client.post(BASE, json={"title": "t", "options": ["a", "b"]})
        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"

    async def test_requires_admin(self, client, headers_for):
        response = await client.post(BASE, json={"title": "t", "options": ["a", "b"]}, headers=headers_for("u1"))
        assert response.status_code == 403
        assert response.json() == {"error": "forbidden", "detail": "Admin only"}

    async def test_invalid_token(self, client):
        response = await client.post(
            BASE, json={"title": "t", "options": ["a", "b"]}, headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401

    @pytest.mark.parametrize("subject", ["", "   "])
    async def test_blank_subject_rejected(self, client, headers_for, subject):
        response = await client.get(f"{BASE}/stats/me", headers=headers_for(subject, is_admin=True))
        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"

    async def test_too_few_options(self, client, admin_headers):
        response = await client.post(BASE, json={"title": "t", "options": ["a"]}, headers=admin_headers)
        assert response.status_code == 400
        assert response.json() == {
            "error": "validation_error",
            "detail": "Invalid data: title and at least 2 options required",
        }

    async def test_malformed_body(self, client, admin_headers):
        response = await client.post(BASE, json={"title": "t", "options": "a,b"}, headers=admin_headers)
        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"


class TestReadAndUpdate:
    async def test_list_and_get(self, client, admin_headers, headers_for):
        created = await _create(client, admin_headers)
        yes = created["options"][0]["id"]
        await client.post(
            f"{BASE}/{created['id']}/bet",
            json={"selected_option": yes, "points_wagered": 50},
            headers=headers_for("u1"),
        )

        anonymous = (await client.get(BASE)).json()
        assert len(anonymous) == 1
        assert anonymous[0]["user_bet"] is None
        assert anonymous[0]["total_bets"] == 1
        assert anonymous[0]["option_counts"] == {yes: 1}

        scoped = (await client.get(BASE, params={"user_id": "u1"})).json()
        assert scoped[0]["user_bet"]["points_wagered"] == 50

        as_caller = (await client.get(f"{BASE}/{created['id']}", headers=headers_for("u1"))).json()
        assert as_caller["user_bet"]["selected_option"] == yes
        assert as_caller["result"] is None

    async def test_get_missing(self, client):
        response = await client.get(f"{BASE}/9999")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    async def test_patch_partial(self, client, admin_headers):
        created = await _create(client, admin_headers)
        response = await client.patch(
            f"{BASE}/{created['id']}", json={"status": "closed", "description": "d"}, headers=admin_headers
        )
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "closed"
        assert data["description"] == "d"
        assert data["title"] == created["title"]

    async def test_patch_invalid_status(self, client, admin_headers):
        created = await _create(client, admin_headers)
        response = await client.patch(f"{BASE}/{created['id']}", json={"status": "done"}, headers=admin_headers)
        assert response.status_code == 400

    async def test_delete(self, client, admin_headers, headers_for):
        created = await _create(client, admin_headers)
        assert (await client.delete(f"{BASE}/{created['id']}", headers=headers_for("u1"))).status_code == 403
        response = await client.delete(f"{BASE}/{created['id']}", headers=admin_headers)
        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert (await client.get(f"{BASE}/{created['id']}")).status_code == 404


class TestBets:
    async def test_place_update_withdraw(self, client, admin_headers, headers_for):
        created = await _create(client, admin_headers)
        yes, no = (o["id"] for o in created["options"])
        url = f"{BASE}/{created['id']}/bet"
        user = headers_for("u1")

        first = await client.post(url, json={"selected_option": yes, "points_wagered": 100}, headers=user)
        assert first.status_code == 200
        assert first.json()["success"] is True
        second = await client.post(url, json={"selected_option": no, "points_wagered": 20}, headers=user)
        assert second.json()["bet"]["id"] == first.json()["bet"]["id"]
        assert second.json()["bet"]["selected_option"] == no

        assert (await client.delete(url, headers=user)).json() == {"success": True}
        assert (await client.delete(url, headers=user)).json() == {"success": True}

    async def test_bet_requires_auth(self, client, admin_headers):
        created = await _create(client, admin_headers)
        response = await client.post(
            f"{BASE}/{created['id']}/bet", json={"selected_option": "x", "points_wagered": 1}
        )
        assert response.status_code == 401

    async def test_bet_errors(self, client, admin_headers, headers_for):
        created = await _create(client, admin_headers)
        url = f"{BASE}/{created['id']}/bet"
        yes = created["options"][0]["id"]
        user = headers_for("u1")

        bad_option = await client.post(url, json={"selected_option": "nope", "points_wagered": 1}, headers=user)
        assert bad_option.status_code == 400
        assert bad_option.json()["detail"] == "Invalid option selected"

        negative = await client.post(url, json={"selected_option": yes, "points_wagered": -1}, headers=user)
        assert negative.status_code == 400

        too_much = await client.post(url, json={"selected_option": yes, "points_wagered": 5000}, headers=user)
        assert too_much.status_code == 409
        assert too_much.json()["detail"] == "Insufficient points. You have 1000 points available."

    async def test_bet_after_deadline(self, client, admin_headers, headers_for):
        past = (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat()
        created = await _create(client, admin_headers, betting_deadline=past)
        response = await client.post(
            f"{BASE}/{created['id']}/bet",
            json={"selected_option": created["options"][0]["id"], "points_wagered": 10},
            headers=headers_for("u1"),
        )
        assert response.status_code == 409
        assert response.json() == {"error": "conflict", "detail": "Betting deadline has passed"}

    async def test_withdraw_after_close(self, client, admin_headers, headers_for):
        created = await _create(client, admin_headers)
        url = f"{BASE}/{created['id']}/bet"
        await client.post(
            url, json={"selected_option": created["options"][0]["id"], "points_wagered": 10},
            headers=headers_for("u1"),
        )
        await client.patch(f"{BASE}/{created['id']}", json={"status": "closed"}, headers=admin_headers)
        response = await client.delete(url, headers=headers_for("u1"))
        assert response.status_code == 409
        assert response.json()["detail"] == "Cannot remove bet - betting is closed"


class TestRevealAndLeaderboard:
    async def test_reveal_flow(self, client, admin_headers, headers_for):
        created = await _create(client, admin_headers)
        yes, no = (o["id"] for o in created["options"])
        bet_url = f"{BASE}/{created['id']}/bet"
        await client.post(bet_url, json={"selected_option": yes, "points_wagered": 100}, headers=headers_for("u1"))
        await client.post(bet_url, json={"selected_option": no, "points_wagered": 200}, headers=headers_for("u2"))

        reveal_url = f"{BASE}/{created['id']}/reveal"
        assert (await client.post(reveal_url, json={"correct_option": yes}, headers=headers_for("u1"))).status_code == 403

        first = await client.post(reveal_url, json={"correct_option": yes}, headers=admin_headers)
        assert first.status_code == 201
        assert first.json()["result"]["correct_option"] == yes
        assert first.json()["affected_users"] == ["u1", "u2"]

        board = (await client.get(f"{BASE}/leaderboard")).json()
        assert [(e["rank"], e["user_id"], e["total_points"], e["accuracy"]) for e in board] == [
            (1, "u1", 1100, 100),
            (2, "u2", 800, 0),
        ]

        correction = await client.post(reveal_url, json={"correct_option": no}, headers=admin_headers)
        assert correction.status_code == 200
        assert correction.json()["corrected"] is True
        assert correction.json()["previous_option"] == yes

        board = (await client.get(f"{BASE}/leaderboard")).json()
        assert [(e["user_id"], e["total_points"]) for e in board] == [("u2", 1200), ("u1", 900)]

        me = (await client.get(f"{BASE}/stats/me", headers=headers_for("u2"))).json()
        assert me["total_points"] == 1200
        assert me["accuracy"] == 100
        assert me["current_streak"] == 1

        detail = (await client.get(f"{BASE}/{created['id']}")).json()
        assert detail["status"] == "revealed"
        assert detail["result"]["correct_option"] == no

    async def test_reveal_invalid_option(self, client, admin_headers):
        created = await _create(client, admin_headers)
        response = await client.post(
            f"{BASE}/{created['id']}/reveal", json={"correct_option": "bogus"}, headers=admin_headers
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid option - not in prediction options"

    async def test_reveal_missing_prediction(self, client, admin_headers):
        response = await client.post(f"{BASE}/424242/reveal", json={"correct_option": "a"}, headers=admin_headers)
        assert response.status_code == 404

    async def test_empty_leaderboard(self, client):
        response = await client.get(f"{BASE}/leaderboard")
        assert response.status_code == 200
        assert response.json() == []

    async def test_stats_me_defaults(self, client, headers_for):
        response = await client.get(f"{BASE}/stats/me", headers=headers_for("fresh"))
        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] == "fresh"
        assert data["total_points"] == 1000
        assert data["total_predictions"] == 0
        assert data["accuracy"] == 0

    async def test_stats_me_requires_auth(self, client):
        assert (await client.get(f"{BASE}/stats/me")).status_code == 401

    async def test_rebuild(self, client, admin_headers, headers_for):
        created = await _create(client, admin_headers)
        yes = created["options"][0]["id"]
        await client.post(
            f"{BASE}/{created['id']}/bet", json={"selected_option": yes, "points_wagered": 10},
            headers=headers_for("u1"),
        )
        await client.post(f"{BASE}/{created['id']}/reveal", json={"correct_option": yes}, headers=admin_headers)

        assert (await client.post(f"{BASE}/stats/rebuild", headers=headers_for("u1"))).status_code == 403
        response = await client.post(f"{BASE}/stats/rebuild", headers=admin_headers)
        assert response.status_code == 200
        assert response.json() == {"users_recomputed": 1}
