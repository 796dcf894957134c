"""
HTTP API Tests

Full request cycle through FastAPI: auth, error envelope, commands and
read projections.
"""
from datetime import timedelta

import pytest

from foodfight.orm.base import utcnow
from foodfight.security.identity import create_access_token

BASE = "/api/food-fights"


async def _create(client, headers, name="Lunch", mode=None):
    payload = {"name": name}
    if mode:
        payload["mode"] = mode
    response = await client.post(f"{BASE}/", json=payload, headers=headers)
    assert response.status_code == 201
    return response.json()


async def _nominate(client, headers, session_id, name):
    response = await client.post(
        f"{BASE}/{session_id}/candidates", json={"name": name, "category": "Food"}, headers=headers
    )
    assert response.status_code == 201
    return response.json()


@pytest.mark.asyncio
class TestAuth:

    async def test_commands_need_a_token(self, client):
        response = await client.post(f"{BASE}/", json={"name": "Lunch"})

        assert response.status_code == 401
        assert response.json()["code"] == "AUTH_REQUIRED"

    async def test_invalid_token_rejected(self, client):
        response = await client.post(
            f"{BASE}/", json={"name": "Lunch"}, headers={"Authorization": "Bearer not-a-token"}
        )

        assert response.status_code == 401

    async def test_expired_token_rejected(self, client):
        token = create_access_token("alice", expires_delta=timedelta(seconds=-5))
        response = await client.post(
            f"{BASE}/", json={"name": "Lunch"}, headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 401

    async def test_reads_are_public(self, client, auth_headers):
        created = await _create(client, auth_headers("alice"))

        response = await client.get(f"{BASE}/{created['id']}")

        assert response.status_code == 200
        assert response.json()["session"]["name"] == "Lunch"


@pytest.mark.asyncio
class TestBracketFlow:

    async def test_lunch_end_to_end(self, client, auth_headers):
        alice, bob = auth_headers("alice"), auth_headers("bob")
        created = await _create(client, alice)
        sid = created["id"]
        assert created["phase"] == "nominating"

        await _nominate(client, alice, sid, "Taco Place")
        await _nominate(client, bob, sid, "Pho House")

        started = await client.post(f"{BASE}/{sid}/start", headers=alice)
        assert started.status_code == 200
        assert started.json()["phase"] == "voting"
        assert started.json()["current_round"] == 1

        view = (await client.get(f"{BASE}/{sid}", headers=alice)).json()
        match = view["matches_by_round"]["1"][0]
        assert match["user_vote"] is None

        first = await client.post(
            f"{BASE}/matches/{match['id']}/vote", json={"candidate_id": match["slot_a"]["id"]}, headers=alice
        )
        assert first.status_code == 200
        second = await client.post(
            f"{BASE}/matches/{match['id']}/vote", json={"candidate_id": match["slot_b"]["id"]}, headers=bob
        )
        assert second.json()["votes_b"] == 1

        again = await client.post(
            f"{BASE}/matches/{match['id']}/vote", json={"candidate_id": match["slot_b"]["id"]}, headers=bob
        )
        assert again.status_code == 409
        assert again.json()["code"] == "DUPLICATE_VOTE"
        assert again.json()["message"] == "Already voted"

        view = (await client.get(f"{BASE}/{sid}", headers=bob)).json()
        assert view["matches_by_round"]["1"][0]["user_vote"] == match["slot_b"]["id"]

        closed = await client.post(f"{BASE}/{sid}/check-end", json={"force": True, "round": 1}, headers=alice)
        assert closed.status_code == 200
        assert closed.json()["transitioned"] is True
        assert closed.json()["session"]["phase"] == "completed"
        assert closed.json()["session"]["winner_id"] == match["slot_a"]["id"]

        view = (await client.get(f"{BASE}/{sid}")).json()
        assert view["winner"]["name"] == match["slot_a"]["name"]

    async def test_start_by_non_creator_forbidden(self, client, auth_headers):
        created = await _create(client, auth_headers("alice"))
        await _nominate(client, auth_headers("alice"), created["id"], "A")
        await _nominate(client, auth_headers("alice"), created["id"], "B")

        response = await client.post(f"{BASE}/{created['id']}/start", headers=auth_headers("bob"))

        assert response.status_code == 403
        assert response.json()["code"] == "FORBIDDEN"

    async def test_start_with_one_candidate(self, client, auth_headers):
        alice = auth_headers("alice")
        created = await _create(client, alice)
        await _nominate(client, alice, created["id"], "A")

        response = await client.post(f"{BASE}/{created['id']}/start", headers=alice)

        assert response.status_code == 400
        assert response.json()["code"] == "INSUFFICIENT_CANDIDATES"
        assert response.json()["details"] == {"found": 1, "required": 2}

    async def test_unforced_check_before_expiry(self, client, auth_headers):
        alice = auth_headers("alice")
        created = await _create(client, alice)
        for name in ("A", "B"):
            await _nominate(client, alice, created["id"], name)
        await client.post(f"{BASE}/{created['id']}/start", headers=alice)

        response = await client.post(f"{BASE}/{created['id']}/check-end", headers=auth_headers("bob"))

        assert response.status_code == 200
        assert response.json()["transitioned"] is False

    async def test_bracket_layout_endpoint(self, client, auth_headers):
        alice = auth_headers("alice")
        created = await _create(client, alice)
        for name in ("A", "B", "C", "D"):
            await _nominate(client, alice, created["id"], name)
        await client.post(f"{BASE}/{created['id']}/start", headers=alice)

        layout = (await client.get(f"{BASE}/{created['id']}/bracket")).json()

        assert [p["y"] for p in layout["positions"]] == [60, 156]
        assert layout["bounds"] == {"width": 232, "height": 248}


@pytest.mark.asyncio
class TestScoredFlow:

    async def test_scores_and_standings(self, client, auth_headers):
        alice, bob = auth_headers("alice"), auth_headers("bob")
        created = await _create(client, alice, mode="scored")
        sid = created["id"]
        a = await _nominate(client, alice, sid, "A")
        b = await _nominate(client, alice, sid, "B")
        await client.post(f"{BASE}/{sid}/start", headers=alice)

        for headers, candidate, score in ((alice, a, 5), (bob, a, 4), (alice, b, 3)):
            response = await client.post(
                f"{BASE}/{sid}/scores", json={"candidate_id": candidate["id"], "score": score}, headers=headers
            )
            assert response.status_code == 200

        view = (await client.get(f"{BASE}/{sid}", headers=alice)).json()
        assert [(s["name"], s["average"]) for s in view["standings"]] == [("A", 4.5), ("B", 3.0)]
        assert view["user_scores"] == {str(a["id"]): 5, str(b["id"]): 3}

    async def test_invalid_score(self, client, auth_headers):
        alice = auth_headers("alice")
        created = await _create(client, alice, mode="scored")
        a = await _nominate(client, alice, created["id"], "A")
        await _nominate(client, alice, created["id"], "B")
        await client.post(f"{BASE}/{created['id']}/start", headers=alice)

        for bad in (0, 6, 3.5, "4", True):
            response = await client.post(
                f"{BASE}/{created['id']}/scores", json={"candidate_id": a["id"], "score": bad}, headers=alice
            )
            assert response.status_code == 400
            assert response.json()["code"] == "INVALID_SCORE"


@pytest.mark.asyncio
class TestCatalogue:

    async def test_list_newest_first(self, client, auth_headers):
        alice = auth_headers("alice")
        first = await _create(client, alice, name="Monday")
        second = await _create(client, alice, name="Tuesday")

        sessions = (await client.get(f"{BASE}/")).json()["sessions"]

        assert [s["id"] for s in sessions] == [second["id"], first["id"]]
        assert sessions[0]["winner"] is None

    async def test_known_candidates_deduplicated(self, client, auth_headers):
        alice = auth_headers("alice")
        one = await _create(client, alice, name="Monday")
        two = await _create(client, alice, name="Tuesday")
        await _nominate(client, alice, one["id"], "Pho House")
        await _nominate(client, alice, one["id"], "Taco Place")
        await _nominate(client, alice, two["id"], "Pho House")

        known = (await client.get(f"{BASE}/candidates/known")).json()["candidates"]

        assert [c["name"] for c in known] == ["Pho House", "Taco Place"]

    async def test_copy_and_delete(self, client, auth_headers):
        alice, bob = auth_headers("alice"), auth_headers("bob")
        created = await _create(client, alice)
        await _nominate(client, alice, created["id"], "A")

        copied = await client.post(f"{BASE}/{created['id']}/copy", headers=bob)
        assert copied.status_code == 201
        assert copied.json()["name"] == "Lunch (Copy)"
        assert copied.json()["creator_id"] == "bob"

        forbidden = await client.delete(f"{BASE}/{created['id']}", headers=bob)
        assert forbidden.status_code == 403

        deleted = await client.delete(f"{BASE}/{created['id']}", headers=alice)
        assert deleted.status_code == 200
        missing = await client.get(f"{BASE}/{created['id']}")
        assert missing.status_code == 404
        assert missing.json()["code"] == "NOT_FOUND"

    async def test_remove_candidate(self, client, auth_headers):
        alice = auth_headers("alice")
        created = await _create(client, alice)
        candidate = await _nominate(client, alice, created["id"], "A")

        response = await client.delete(f"{BASE}/{created['id']}/candidates/{candidate['id']}", headers=alice)
        assert response.status_code == 200

        again = await client.delete(f"{BASE}/{created['id']}/candidates/{candidate['id']}", headers=alice)
        assert again.status_code == 404

    async def test_blank_name_is_validation_error(self, client, auth_headers):
        response = await client.post(f"{BASE}/", json={"name": "  "}, headers=auth_headers("alice"))

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
