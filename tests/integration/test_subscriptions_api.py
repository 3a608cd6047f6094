"""Subscription, plan and user endpoints through the full middleware stack."""

import uuid

import pytest

API = "/api/v1"


class TestPlansAndUsers:

    @pytest.mark.asyncio
    async def test_create_and_list_plans(self, client):
        response = await client.post(f"{API}/plans", json={
            "name": "Team",
            "price": "29.00",
            "billing_cycle": "quarterly",
        })

        assert response.status_code == 201
        plan = response.json()
        assert plan["billing_cycle"] == "quarterly"

        listing = await client.get(f"{API}/plans")
        assert [item["name"] for item in listing.json()] == ["Team"]

    @pytest.mark.asyncio
    async def test_duplicate_plan_name(self, client, monthly_plan):
        response = await client.post(f"{API}/plans", json={"name": monthly_plan.name, "price": "1.00"})

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "CONFLICT_ERROR"

    @pytest.mark.asyncio
    async def test_create_and_get_user(self, client):
        response = await client.post(f"{API}/users", json={"email": "linus@example.com", "name": "Linus"})

        assert response.status_code == 201
        user_id = response.json()["id"]
        fetched = await client.get(f"{API}/users/{user_id}")
        assert fetched.json()["email"] == "linus@example.com"

    @pytest.mark.asyncio
    async def test_unknown_user(self, client):
        response = await client.get(f"{API}/users/{uuid.uuid4()}")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"


class TestSubscriptionEndpoints:

    @pytest.mark.asyncio
    async def test_create_get_and_list(self, client, user, monthly_plan):
        response = await client.post(f"{API}/subscriptions", json={
            "user_id": str(user.id),
            "plan_id": str(monthly_plan.id),
        })

        assert response.status_code == 201
        created = response.json()
        assert created["status"] == "active"
        assert created["renewal_count"] == 0

        fetched = await client.get(f"{API}/subscriptions/{created['id']}")
        assert fetched.json()["id"] == created["id"]

        listing = await client.get(f"{API}/subscriptions", params={"status": "active"})
        body = listing.json()
        assert body["total"] == 1
        assert body["pages"] == 1

        by_user = await client.get(f"{API}/subscriptions/user/{user.id}")
        assert len(by_user.json()) == 1

    @pytest.mark.asyncio
    async def test_second_active_subscription_conflicts(self, client, user, monthly_plan, yearly_plan):
        await client.post(f"{API}/subscriptions", json={"user_id": str(user.id), "plan_id": str(monthly_plan.id)})

        response = await client.post(f"{API}/subscriptions", json={
            "user_id": str(user.id),
            "plan_id": str(yearly_plan.id),
        })

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_subscribe_uses_caller_identity(self, client, user, monthly_plan):
        response = await client.post(
            f"{API}/subscriptions/subscribe",
            json={"plan_id": str(monthly_plan.id)},
            headers={"X-User-Id": str(user.id)},
        )

        assert response.status_code == 201
        assert response.json()["user_id"] == str(user.id)

    @pytest.mark.asyncio
    async def test_subscribe_without_caller_is_unauthorized(self, client, monthly_plan):
        response = await client.post(f"{API}/subscriptions/subscribe", json={"plan_id": str(monthly_plan.id)})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTHENTICATION_REQUIRED"

    @pytest.mark.asyncio
    async def test_renew_cancel_flow(self, client, user, monthly_plan):
        created = (await client.post(f"{API}/subscriptions", json={
            "user_id": str(user.id),
            "plan_id": str(monthly_plan.id),
        })).json()

        renewed = await client.post(f"{API}/subscriptions/{created['id']}/renew")
        assert renewed.status_code == 200
        assert renewed.json()["renewal_count"] == 1

        cancelled = await client.post(f"{API}/subscriptions/{created['id']}/cancel", json={"reason": "switching"})
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "cancelled"
        assert cancelled.json()["cancellation_reason"] == "switching"

        again = await client.post(f"{API}/subscriptions/{created['id']}/renew")
        assert again.status_code == 409
        reactivated = await client.patch(f"{API}/subscriptions/{created['id']}", json={"status": "active"})
        assert reactivated.status_code == 409

        final = await client.get(f"{API}/subscriptions/{created['id']}")
        assert final.json()["status"] == "cancelled"
        assert final.json()["renewal_count"] == 1

    @pytest.mark.asyncio
    async def test_change_plan_to_same_plan(self, client, user, monthly_plan):
        created = (await client.post(f"{API}/subscriptions", json={
            "user_id": str(user.id),
            "plan_id": str(monthly_plan.id),
        })).json()

        response = await client.post(
            f"{API}/subscriptions/{created['id']}/change-plan",
            json={"plan_id": str(monthly_plan.id)},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "BUSINESS_RULE_VIOLATION"

    @pytest.mark.asyncio
    async def test_update_rejects_naive_dates(self, client, user, monthly_plan):
        created = (await client.post(f"{API}/subscriptions", json={
            "user_id": str(user.id),
            "plan_id": str(monthly_plan.id),
        })).json()

        response = await client.patch(
            f"{API}/subscriptions/{created['id']}",
            json={"end_date": "2030-01-01T00:00:00"},
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_stats(self, client, user, monthly_plan):
        await client.post(f"{API}/subscriptions", json={"user_id": str(user.id), "plan_id": str(monthly_plan.id)})

        response = await client.get(f"{API}/subscriptions/stats")

        assert response.json()["total"] == 1
        assert response.json()["by_status"]["active"] == 1

    @pytest.mark.asyncio
    async def test_delete(self, client, user, monthly_plan):
        created = (await client.post(f"{API}/subscriptions", json={
            "user_id": str(user.id),
            "plan_id": str(monthly_plan.id),
        })).json()

        deleted = await client.delete(f"{API}/subscriptions/{created['id']}")
        missing = await client.get(f"{API}/subscriptions/{created['id']}")

        assert deleted.status_code == 204
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_responses_carry_request_id(self, client):
        response = await client.get(f"{API}/subscriptions", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
