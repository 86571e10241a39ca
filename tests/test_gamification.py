"""Tests for points, levels, achievements, daily challenges and the daily claim."""

from __future__ import annotations

from db_stores import GamificationStoreDB, level_for


def _unlocked(client):
    data = client.get("/api/gamification?action=achievements").get_json()["achievements"]
    return {a["name"] for a in data if a["unlocked"]}


class TestLevels:
    def test_level_for(self):
        assert level_for(0) == (1, 0)
        assert level_for(499) == (1, 499)
        assert level_for(500) == (2, 0)
        assert level_for(-20) == (1, 0)


class TestStats:
    def test_stats_after_login(self, auth_client):
        data = auth_client.get("/api/gamification").get_json()
        assert data["profile"]["username"] == "alice"
        assert data["profile"]["current_streak"] == 1
        assert data["rank"] == 1
        assert data["achievements_count"] == 1
        assert data["total_activities"] >= 1

    def test_first_login_achievement(self, auth_client):
        assert "first_login" in _unlocked(auth_client)
        inbox = auth_client.get("/api/notifications?type=achievement").get_json()
        assert inbox["total"] == 1

    def test_invalid_action(self, auth_client):
        assert auth_client.get("/api/gamification?action=unknown").status_code == 400
        assert auth_client.post("/api/gamification", json={"action": "unknown"}).status_code == 400

    def test_requires_login(self, client):
        assert client.get("/api/gamification").status_code == 401


class TestPoints:
    def test_add_points_levels_up_and_unlocks(self, auth_client):
        resp = auth_client.post("/api/gamification", json={
            "action": "add-points", "points": 600, "source": "bonus", "description": "Event prize",
        })
        data = resp.get_json()
        assert data["total_points"] == 600
        assert data["level"] == 2
        assert data["experience_points"] == 100
        assert data["level_up"] == 2
        assert data["new_achievements"] == ["rookie"]

    def test_add_points_validation(self, auth_client):
        resp = auth_client.post("/api/gamification", json={"action": "add-points", "points": 0, "source": "x"})
        assert resp.status_code == 400

    def test_points_never_negative(self, app, auth_client):
        with app.app_context():
            result = GamificationStoreDB(1).add_points(-100, "store_purchase")
        assert result["total_points"] == 0

    def test_leaderboard(self, auth_client, other_client):
        other_client.post("/api/gamification", json={"action": "add-points", "points": 30, "source": "x"})
        auth_client.post("/api/gamification", json={"action": "add-points", "points": 10, "source": "x"})
        board = auth_client.get("/api/gamification?action=leaderboard&limit=2").get_json()["leaderboard"]
        assert [(r["username"], r["rank"]) for r in board] == [("bob", 1), ("alice", 2)]
        assert auth_client.get("/api/gamification").get_json()["rank"] == 2

    def test_point_history_newest_first(self, auth_client):
        for pts in (5, 7):
            auth_client.post("/api/gamification", json={"action": "add-points", "points": pts, "source": "x"})
        history = auth_client.get("/api/gamification?action=point-history&limit=2").get_json()["history"]
        assert [h["points"] for h in history] == [7, 5]


class TestChallenges:
    def test_log_activity_advances_challenge(self, auth_client):
        for _ in range(2):
            data = auth_client.post("/api/gamification", json={
                "action": "log-activity", "activityType": "comment",
            }).get_json()
        assert data["completed_challenges"] == ["community_helper"]
        challenges = auth_client.get("/api/gamification?action=daily-challenges").get_json()["challenges"]
        helper = next(c for c in challenges if c["name"] == "community_helper")
        assert helper["completed"] is True
        assert helper["progress"] == 2

    def test_complete_challenge(self, auth_client):
        challenges = auth_client.get("/api/gamification?action=daily-challenges").get_json()["challenges"]
        quiz = next(c for c in challenges if c["name"] == "complete_daily_quiz")
        resp = auth_client.post("/api/gamification", json={"action": "complete-challenge", "challengeId": quiz["id"]})
        assert resp.get_json()["completed"] is True
        assert resp.get_json()["message"] == "Challenge completed!"

    def test_complete_unknown_challenge(self, auth_client):
        resp = auth_client.post("/api/gamification", json={"action": "complete-challenge", "challengeId": 999})
        assert resp.status_code == 404

    def test_log_activity_requires_type(self, auth_client):
        resp = auth_client.post("/api/gamification", json={"action": "log-activity"})
        assert resp.status_code == 400


class TestDailyClaim:
    def test_claim_once_per_day(self, auth_client):
        assert auth_client.get("/api/daily-claim").get_json() == {"claimed": False}
        resp = auth_client.post("/api/daily-claim")
        assert resp.status_code == 200
        assert resp.get_json() == {"success": True, "points": 50, "totalPoints": 50}
        assert auth_client.get("/api/daily-claim").get_json() == {"claimed": True}

        again = auth_client.post("/api/daily-claim")
        assert again.status_code == 400
        assert again.get_json()["error"] == "Daily points already claimed today"

    def test_claim_completes_login_challenge(self, auth_client):
        auth_client.post("/api/daily-claim")
        stats = auth_client.get("/api/gamification").get_json()
        assert stats["profile"]["total_points"] == 60
        assert stats["daily_challenges_completed_today"] == 1

    def test_claim_disabled(self, app, auth_client):
        app.config["FEATURE_FLAGS"] = {**app.config["FEATURE_FLAGS"], "daily_claim": False}
        assert auth_client.post("/api/daily-claim").status_code == 404


class TestDebugSnapshot:
    def test_available_in_testing(self, auth_client):
        data = auth_client.get("/api/debug/gamification").get_json()
        assert data["userId"] == 1
        assert data["profileExists"] is True
        assert data["claimedToday"] is False
