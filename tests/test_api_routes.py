"""
tests/test_api_routes.py — API Route Tests
===========================================
Public read endpoints and the JWT-guarded admin endpoints, driven through
FastAPI's TestClient against the in-memory database.
"""

from __future__ import annotations

from conftest import GUILD_ID, make_admin_token
from questline.services.ledger_service import add_xp

QUEST_BODY = {
    "guild_id": GUILD_ID,
    "name": "Join the newsletter",
    "description": "Sign up with your email address.",
    "xp_reward": 100,
    "verification_kind": "email",
    "verification_config": {
        "endpoint": "https://api.example.com/subscribers",
        "params": {"email": "[EMAIL]"},
        "success_condition": {"field": "subscribed", "operator": "=", "value": True},
    },
}


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class TestPublic:
    def test_health(self, client):
        assert client.get("/api/health").json() == {"status": "ok"}

    def test_leaderboard(self, client, db_engine):
        add_xp(db_engine, 11, GUILD_ID, 30)
        add_xp(db_engine, 22, GUILD_ID, 80)

        resp = client.get(f"/api/guilds/{GUILD_ID}/leaderboard")
        assert resp.status_code == 200
        entries = resp.json()["entries"]
        assert [(e["rank"], e["user_id"], e["total_xp"]) for e in entries] == [
            (1, "22", 80),
            (2, "11", 30),
        ]

    def test_leaderboard_limit_bounds(self, client):
        assert client.get(f"/api/guilds/{GUILD_ID}/leaderboard?limit=0").status_code == 422

    def test_progress(self, client, db_engine):
        add_xp(db_engine, 11, GUILD_ID, 30)
        body = client.get(f"/api/guilds/{GUILD_ID}/users/11/progress").json()
        assert body["total_xp"] == 30
        assert body["quests_completed"] == 1
        assert body["current_quest"] is None

    def test_quests(self, client, make_quest):
        make_quest(max_completions=5)
        quests = client.get(f"/api/guilds/{GUILD_ID}/quests").json()["quests"]
        assert len(quests) == 1
        assert quests[0]["remaining"] == 5


class TestAdminAuth:
    def test_missing_token(self, client):
        resp = client.post("/api/admin/quests", json=QUEST_BODY)
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == "Bearer"

    def test_bad_token(self, client):
        resp = client.post("/api/admin/quests", json=QUEST_BODY, headers=_auth("garbage"))
        assert resp.status_code == 401

    def test_non_admin(self, client):
        import jwt

        from questline.api.deps import JWT_ALGORITHM, JWT_SECRET

        token = jwt.encode({"sub": "1", "is_admin": False}, JWT_SECRET, algorithm=JWT_ALGORITHM)
        resp = client.post("/api/admin/quests", json=QUEST_BODY, headers=_auth(token))
        assert resp.status_code == 403

    def test_subject_must_be_a_user_id(self, client):
        import jwt

        from questline.api.deps import JWT_ALGORITHM, JWT_SECRET

        token = jwt.encode({"sub": "admin", "is_admin": True}, JWT_SECRET, algorithm=JWT_ALGORITHM)
        resp = client.post("/api/admin/quests", json=QUEST_BODY, headers=_auth(token))
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == "Bearer"


class TestAdminQuests:
    def test_create(self, client, admin_token):
        body = dict(QUEST_BODY, tasks=[{"title": "Open the email", "points": 10}])
        resp = client.post("/api/admin/quests", json=body, headers=_auth(admin_token))
        assert resp.status_code == 201
        data = resp.json()
        assert data["name"] == "Join the newsletter"
        assert data["guild_id"] == str(GUILD_ID)
        assert [t["title"] for t in data["tasks"]] == ["Open the email"]

    def test_create_invalid(self, client, admin_token):
        body = dict(QUEST_BODY, xp_reward=0)
        resp = client.post("/api/admin/quests", json=body, headers=_auth(admin_token))
        assert resp.status_code == 422
        assert resp.json()["field"] == "xp_reward"

    def test_toggle_active(self, client, make_quest):
        quest = make_quest()
        token = make_admin_token(sub="12345")
        resp = client.patch(
            f"/api/admin/quests/{quest.id}/active", json={"active": False}, headers=_auth(token)
        )
        assert resp.status_code == 200
        assert client.get(f"/api/guilds/{GUILD_ID}/quests").json()["quests"] == []

    def test_toggle_missing(self, client, admin_token):
        resp = client.patch(
            "/api/admin/quests/nope/active", json={"active": True}, headers=_auth(admin_token)
        )
        assert resp.status_code == 404
