"""End-to-end API flows over the ledger core endpoints."""

import uuid

import pytest
from sqlalchemy import select

from citypulse.models import Report


def _headers(raw_key: str) -> dict:
    return {"X-API-Key": raw_key}


REPORT_BODY = {
    "title": "Broken streetlight",
    "description": "Light has been out for a week",
    "category": "lighting",
    "priority": "high",
    "latitude": 40.71,
    "longitude": -74.0,
    "address": "5th Ave & Main",
}


class TestAuth:
    @pytest.mark.asyncio
    async def test_generate_and_verify_key(self, client):
        created = await client.post("/api/v1/keys", json={"email": "ana@example.com"})
        assert created.status_code == 201
        raw_key = created.json()["api_key"]

        verified = await client.get("/api/v1/keys/verify", headers=_headers(raw_key))
        assert verified.status_code == 200
        assert verified.json()["user_id"] == created.json()["user_id"]
        assert verified.json()["valid"] is True
        assert verified.json()["is_admin"] is False
        assert "cannot be shown again" in created.json()["message"]

    @pytest.mark.asyncio
    async def test_duplicate_email_conflicts(self, client):
        await client.post("/api/v1/keys", json={"email": "dup@example.com"})
        again = await client.post("/api/v1/keys", json={"email": "dup@example.com"})
        assert again.status_code == 409

    @pytest.mark.asyncio
    async def test_invalid_key_rejected(self, client):
        response = await client.get("/api/v1/credits", headers=_headers("not-a-key"))
        assert response.status_code == 401


class TestReportsAndCredits:
    @pytest.mark.asyncio
    async def test_submit_report_awards_credits(self, client, make_user):
        _, raw_key = await make_user()
        photos = ["https://cdn.test/1.png", "https://cdn.test/2.png", "https://cdn.test/3.png"]

        response = await client.post(
            "/api/v1/reports", json={**REPORT_BODY, "photos": photos}, headers=_headers(raw_key)
        )

        assert response.status_code == 201
        body = response.json()
        assert body["credits_awarded"] == 16
        assert body["report"]["upvotes"] == 0
        assert body["report"]["status"] == "pending"

        credits = await client.get("/api/v1/credits", headers=_headers(raw_key))
        assert credits.json()["balance"] == 16
        assert credits.json()["raw_balance"] == 16
        assert credits.json()["entries"][0]["reason"] == (
            "Report submitted: Broken streetlight (+6 photo bonus)"
        )

    @pytest.mark.asyncio
    async def test_too_many_photos_is_400(self, client, make_user):
        _, raw_key = await make_user()
        photos = [f"https://cdn.test/{i}.png" for i in range(6)]
        response = await client.post(
            "/api/v1/reports", json={**REPORT_BODY, "photos": photos}, headers=_headers(raw_key)
        )
        assert response.status_code == 400
        assert response.json()["error"] == "You can only upload up to 5 photos per report."

    @pytest.mark.asyncio
    async def test_malformed_request_is_400(self, client, make_user):
        _, raw_key = await make_user()
        response = await client.post(
            "/api/v1/reports", json={"title": "missing fields"}, headers=_headers(raw_key)
        )
        assert response.status_code == 400
        assert response.json()["error"]

    @pytest.mark.asyncio
    async def test_leaderboard_ranks_users(self, client, make_user, grant_credits):
        leader, raw_key = await make_user(display_name="leader")
        runner_up, _ = await make_user(display_name="runner-up")
        await grant_credits(leader.id, 40)
        await grant_credits(runner_up.id, 15)

        response = await client.get("/api/v1/leaderboard", headers=_headers(raw_key))

        items = response.json()["items"]
        assert [item["display_name"] for item in items] == ["leader", "runner-up"]
        assert [item["rank"] for item in items] == [1, 2]


class TestVoting:
    @pytest.mark.asyncio
    async def test_vote_cycle(self, client, make_user, make_report):
        author, _ = await make_user()
        _, voter_key = await make_user()
        report = await make_report(author.id)
        url = f"/api/v1/reports/{report.id}/vote"

        cast = await client.post(url, json={"vote_type": "upvote"}, headers=_headers(voter_key))
        assert cast.status_code == 200
        assert cast.json()["transition"] == "cast"
        assert cast.json()["upvotes"] == 1
        assert cast.json()["credits_awarded"] == 2

        switched = await client.post(url, json={"vote_type": "downvote"}, headers=_headers(voter_key))
        assert switched.json()["transition"] == "switch"
        assert (switched.json()["upvotes"], switched.json()["downvotes"]) == (0, 1)

        state = await client.get(url, headers=_headers(voter_key))
        assert state.json()["user_vote"] == "downvote"

        retracted = await client.post(url, json={"vote_type": "downvote"}, headers=_headers(voter_key))
        assert retracted.json()["transition"] == "retract"
        assert retracted.json()["user_vote"] is None

        credits = await client.get("/api/v1/credits", headers=_headers(voter_key))
        assert credits.json()["balance"] == 2

    @pytest.mark.asyncio
    async def test_vote_on_unknown_report_is_404(self, client, make_user):
        _, raw_key = await make_user()
        response = await client.post(
            f"/api/v1/reports/{uuid.uuid4()}/vote",
            json={"vote_type": "upvote"},
            headers=_headers(raw_key),
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_vote_type_is_400(self, client, make_user, make_report):
        author, raw_key = await make_user()
        report = await make_report(author.id)
        response = await client.post(
            f"/api/v1/reports/{report.id}/vote",
            json={"vote_type": "sideways"},
            headers=_headers(raw_key),
        )
        assert response.status_code == 400


class TestRewards:
    @pytest.mark.asyncio
    async def test_redeem_flow(self, client, make_user, make_reward, grant_credits):
        user, raw_key = await make_user()
        await grant_credits(user.id, 50)
        reward = await make_reward(cost=50, stock=1)

        catalogue = await client.get("/api/v1/rewards", headers=_headers(raw_key))
        assert [item["id"] for item in catalogue.json()] == [str(reward.id)]

        redeemed = await client.post(
            f"/api/v1/rewards/{reward.id}/redeem", headers=_headers(raw_key)
        )
        assert redeemed.status_code == 201
        body = redeemed.json()
        assert body["balance"] == 0
        assert body["redemption"]["redemption_code"].startswith("CP-")
        assert body["message"] == "Successfully redeemed $5 Coffee Shop Gift Card!"

        again = await client.post(f"/api/v1/rewards/{reward.id}/redeem", headers=_headers(raw_key))
        assert again.status_code == 409
        assert "out of stock" in again.json()["error"]

        history = await client.get("/api/v1/redemptions", headers=_headers(raw_key))
        assert len(history.json()) == 1
        assert history.json()[0]["reward_title"] == "$5 Coffee Shop Gift Card"

    @pytest.mark.asyncio
    async def test_insufficient_credits_is_409(self, client, make_user, make_reward):
        _, raw_key = await make_user()
        reward = await make_reward(cost=50, stock=3)
        response = await client.post(
            f"/api/v1/rewards/{reward.id}/redeem", headers=_headers(raw_key)
        )
        assert response.status_code == 409
        assert response.json()["error"] == "You need 50 credits but have 0."

    @pytest.mark.asyncio
    async def test_idempotency_key_header_replays(self, client, make_user, make_reward, grant_credits):
        user, raw_key = await make_user()
        await grant_credits(user.id, 200)
        reward = await make_reward(cost=50, stock=5)
        headers = {**_headers(raw_key), "Idempotency-Key": "checkout-1"}

        first = await client.post(f"/api/v1/rewards/{reward.id}/redeem", headers=headers)
        replay = await client.post(f"/api/v1/rewards/{reward.id}/redeem", headers=headers)

        assert first.status_code == 201
        assert replay.status_code == 200
        assert replay.json()["redemption"]["id"] == first.json()["redemption"]["id"]
        assert replay.json()["balance"] == 150


class TestAdmin:
    @pytest.mark.asyncio
    async def test_non_admin_forbidden(self, client, make_user):
        user, raw_key = await make_user()
        response = await client.post(
            "/api/v1/admin/adjustments",
            json={"user_id": str(user.id), "amount": 5, "reason": "gift"},
            headers=_headers(raw_key),
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_adjustment_and_display_clamp(self, client, make_user, grant_credits):
        _, admin_key = await make_user(is_admin=True)
        citizen, citizen_key = await make_user()
        await grant_credits(citizen.id, 10)

        response = await client.post(
            "/api/v1/admin/adjustments",
            json={"user_id": str(citizen.id), "amount": -30, "reason": "Duplicate award reversal"},
            headers=_headers(admin_key),
        )
        assert response.status_code == 201
        assert response.json()["type"] == "adjustment"

        credits = await client.get("/api/v1/credits", headers=_headers(citizen_key))
        assert credits.json()["raw_balance"] == -20
        assert credits.json()["balance"] == 0

    @pytest.mark.asyncio
    async def test_zero_adjustment_is_400(self, client, make_user):
        admin, admin_key = await make_user(is_admin=True)
        response = await client.post(
            "/api/v1/admin/adjustments",
            json={"user_id": str(admin.id), "amount": 0, "reason": "noop"},
            headers=_headers(admin_key),
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_reject_redemption_refunds(self, client, make_user, make_reward, grant_credits):
        _, admin_key = await make_user(is_admin=True)
        citizen, citizen_key = await make_user()
        await grant_credits(citizen.id, 100)
        reward = await make_reward(cost=100, stock=1)

        redeemed = await client.post(
            f"/api/v1/rewards/{reward.id}/redeem", headers=_headers(citizen_key)
        )
        redemption_id = redeemed.json()["redemption"]["id"]

        rejected = await client.patch(
            f"/api/v1/admin/redemptions/{redemption_id}",
            json={"status": "rejected"},
            headers=_headers(admin_key),
        )
        assert rejected.json()["status"] == "rejected"

        repeat = await client.patch(
            f"/api/v1/admin/redemptions/{redemption_id}",
            json={"status": "fulfilled"},
            headers=_headers(admin_key),
        )
        assert repeat.status_code == 409

        credits = await client.get("/api/v1/credits", headers=_headers(citizen_key))
        assert credits.json()["balance"] == 100

    @pytest.mark.asyncio
    async def test_ledger_feed(self, client, make_user, grant_credits):
        _, admin_key = await make_user(is_admin=True)
        ana, ana_key = await make_user(display_name="Ana")
        ben, _ = await make_user(display_name="Ben")
        await grant_credits(ana.id, 10)
        await grant_credits(ben.id, 5)
        await client.post(
            "/api/v1/admin/adjustments",
            json={"user_id": str(ana.id), "amount": -3, "reason": "Duplicate award reversal"},
            headers=_headers(admin_key),
        )

        response = await client.get("/api/v1/admin/ledger", headers=_headers(admin_key))

        assert response.status_code == 200
        body = response.json()
        assert body["total_credits_issued"] == 18
        assert sorted((item["display_name"], item["amount"]) for item in body["items"]) == [
            ("Ana", -3),
            ("Ana", 10),
            ("Ben", 5),
        ]
        assert {item["user_id"] for item in body["items"]} == {str(ana.id), str(ben.id)}

        limited = await client.get(
            "/api/v1/admin/ledger", params={"limit": 1}, headers=_headers(admin_key)
        )
        assert len(limited.json()["items"]) == 1

        forbidden = await client.get("/api/v1/admin/ledger", headers=_headers(ana_key))
        assert forbidden.status_code == 403

    @pytest.mark.asyncio
    async def test_reconcile_endpoint(self, client, make_user, make_report, session_factory):
        admin, admin_key = await make_user(is_admin=True)
        report = await make_report(admin.id)
        async with session_factory() as db:
            stored = await db.get(Report, report.id)
            stored.upvotes = 4
            await db.commit()

        response = await client.post("/api/v1/admin/reconcile", headers=_headers(admin_key))

        assert response.status_code == 200
        assert response.json() == {"repaired": 1}
        async with session_factory() as db:
            result = await db.execute(select(Report.upvotes).where(Report.id == report.id))
            assert result.scalar_one() == 0


class TestOps:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_metrics_exposed(self, client, make_user):
        _, raw_key = await make_user()
        await client.get("/api/v1/credits", headers=_headers(raw_key))
        response = await client.get("/metrics")
        assert response.status_code == 200
        assert "citypulse_http_requests_total" in response.text
