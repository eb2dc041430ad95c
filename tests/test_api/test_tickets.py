"""Tests for /api/tickets -- inbox tabs, creation, AI queueing, archive, messages."""

import json
import uuid
from datetime import datetime, timedelta

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import select, update

from supportdesk.common.cache import ListCache
from supportdesk.common.config import settings
from supportdesk.common.models import AIRun, AISettings, Customer, Ticket, TicketMessage

ORG_A = uuid.UUID("00000000-0000-4000-8000-0000000000aa")
ORG_B = uuid.UUID("00000000-0000-4000-8000-0000000000bb")


def _new_ticket_body(**overrides):
    body = {
        "subject": "Where is my order?",
        "content": "It has been two weeks.\n\nPlease help.",
        "category": "shipping",
        "customer": {"name": "Jane Doe", "email": "Jane@Example.com"},
    }
    body.update(overrides)
    return body


@pytest.fixture
async def ai_enabled(seed):
    await seed(AISettings(org_id=ORG_A, ai_enabled=True))


@pytest.fixture
async def ai_client(make_client, mock_redis):
    return await make_client(redis_client=mock_redis)


class TestCreateTicket:
    async def test_creates_customer_from_email(self, client, session_factory):
        response = await client.post("/api/tickets", json=_new_ticket_body())
        assert response.status_code == 200, response.text
        body = response.json()
        ticket = body["ticket"]
        assert ticket["ticketNumber"] == "TCK-00001"
        assert ticket["priority"] == "medium"
        assert ticket["status"] == "open"
        assert ticket["excerpt"] == "It has been two weeks. Please help."
        assert ticket["customer"]["email"] == "jane@example.com"
        assert body["runId"] is None

        async with session_factory() as db:
            customer = (await db.execute(select(Customer))).scalar_one()
        assert customer.last_ticket_at is not None

    async def test_reuses_existing_customer_by_email(self, client, seed, new_customer):
        existing = new_customer(email="jane@example.com")
        await seed(existing)
        response = await client.post("/api/tickets", json=_new_ticket_body())
        assert response.json()["ticket"]["customer"]["id"] == str(existing.id)

    async def test_ticket_numbers_are_sequential(self, client):
        first = await client.post("/api/tickets", json=_new_ticket_body())
        second = await client.post("/api/tickets", json=_new_ticket_body(priority="high"))
        assert first.json()["ticket"]["ticketNumber"] == "TCK-00001"
        assert second.json()["ticket"]["ticketNumber"] == "TCK-00002"
        assert second.json()["ticket"]["priority"] == "high"

    async def test_with_customer_id(self, client, seed, new_customer):
        owner = new_customer()
        await seed(owner)
        body = _new_ticket_body(customerId=str(owner.id))
        del body["customer"]
        response = await client.post("/api/tickets", json=body)
        assert response.status_code == 200
        assert response.json()["ticket"]["customer"]["name"] == owner.name

    async def test_customer_id_from_other_org(self, client, seed, new_customer):
        foreign = new_customer(ORG_B)
        await seed(foreign)
        body = _new_ticket_body(customerId=str(foreign.id))
        del body["customer"]
        response = await client.post("/api/tickets", json=body)
        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Customer not found."

    async def test_both_customer_sources_rejected(self, client):
        body = _new_ticket_body(customerId=str(uuid.uuid4()))
        response = await client.post("/api/tickets", json=body)
        assert response.status_code == 400

    async def test_invalid_category_rejected(self, client):
        response = await client.post("/api/tickets", json=_new_ticket_body(category="spam"))
        assert response.status_code == 400

    async def test_queues_ai_run_when_enabled(self, ai_client, ai_enabled, mock_redis, session_factory):
        response = await ai_client.post("/api/tickets", json=_new_ticket_body())
        body = response.json()
        assert body["runId"] is not None
        assert body["ticket"]["aiStatus"] == "pending"
        assert body["ticket"]["latestRunId"] == body["runId"]

        mock_redis.rpush.assert_awaited_once()
        key, payload = mock_redis.rpush.await_args.args
        assert key == settings.ai_queue_key
        assert json.loads(payload) == {"runId": body["runId"]}

        async with session_factory() as db:
            run = await db.get(AIRun, uuid.UUID(body["runId"]))
        assert run.status == "queued"
        assert str(run.ticket_id) == body["ticket"]["id"]

    async def test_run_ai_false_skips_queue(self, ai_client, ai_enabled, mock_redis):
        response = await ai_client.post("/api/tickets", json=_new_ticket_body(runAI=False))
        assert response.json()["runId"] is None
        assert response.json()["ticket"]["aiStatus"] is None
        mock_redis.rpush.assert_not_awaited()

    async def test_no_settings_means_ai_off(self, ai_client, mock_redis):
        response = await ai_client.post("/api/tickets", json=_new_ticket_body(runAI=True))
        assert response.json()["runId"] is None
        mock_redis.rpush.assert_not_awaited()


class TestListTickets:
    @pytest.fixture
    async def inbox(self, seed, new_customer, new_ticket):
        owner = new_customer(name="Jane Doe", email="jane@shop.example")
        await seed(owner)
        tickets = {
            "open": new_ticket(owner, 0),
            "high": new_ticket(owner, 1, priority="high"),
            "draft": new_ticket(owner, 2, ai_status="draft_ready"),
            "human": new_ticket(owner, 3, ai_status="human_needed"),
            "resolved": new_ticket(owner, 4, status="resolved"),
            "archived": new_ticket(owner, 5, priority="high", archived_at=datetime(2026, 3, 2)),
        }
        await seed(*tickets.values())
        return tickets

    @pytest.mark.parametrize(
        ("tab", "expected"),
        [
            ("all", ["resolved", "human", "draft", "high", "open"]),
            ("priority", ["high"]),
            ("draft_ready", ["draft"]),
            ("human_needed", ["human"]),
            ("resolved", ["resolved"]),
            ("archived", ["archived"]),
        ],
    )
    async def test_tabs(self, client, inbox, tab, expected):
        response = await client.get("/api/tickets", params={"tab": tab})
        assert response.status_code == 200
        ids = [t["id"] for t in response.json()["items"]]
        assert ids == [str(inbox[name].id) for name in expected]

    async def test_default_tab_hides_archived(self, client, inbox):
        ids = {t["id"] for t in (await client.get("/api/tickets")).json()["items"]}
        assert str(inbox["archived"].id) not in ids
        assert len(ids) == 5

    async def test_invalid_tab(self, client):
        response = await client.get("/api/tickets", params={"tab": "spam"})
        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Invalid tab value."

    async def test_search_matches_customer_email(self, client, inbox, seed, new_customer, new_ticket):
        other = new_customer(n=9, name="Bob", email="bob@elsewhere.example")
        await seed(other)
        await seed(new_ticket(other, 9, ticket_number="TCK-00099"))
        response = await client.get("/api/tickets", params={"search": "SHOP.example"})
        assert len(response.json()["items"]) == 5

    async def test_embeds_customer(self, client, inbox):
        item = (await client.get("/api/tickets", params={"limit": "1"})).json()["items"][0]
        assert item["customer"] == {
            "id": str(inbox["open"].customer_id),
            "name": "Jane Doe",
            "email": "jane@shop.example",
        }

    async def test_pagination_with_tab(self, client, inbox):
        first = (await client.get("/api/tickets", params={"limit": "2", "order": "asc"})).json()
        rest = (
            await client.get("/api/tickets", params={"limit": "10", "order": "asc", "cursor": first["nextCursor"]})
        ).json()
        ids = [t["id"] for t in first["items"] + rest["items"]]
        expected = ["open", "high", "draft", "human", "resolved"]
        assert ids == [str(inbox[name].id) for name in expected]

    async def test_other_org_tickets_hidden(self, outsider, inbox):
        assert (await outsider.get("/api/tickets")).json()["items"] == []


class TestListFreshness:
    async def test_worker_updates_are_listed(
        self, make_client, dict_redis, seed, new_customer, new_ticket, session_factory
    ):
        owner = new_customer()
        await seed(owner)
        row = new_ticket(owner, ai_status="pending")
        await seed(row)
        client = await make_client(cache=ListCache(dict_redis))
        assert (await client.get("/api/tickets")).json()["items"][0]["aiStatus"] == "pending"

        async with session_factory() as session:
            await session.execute(
                update(Ticket).where(Ticket.id == row.id).values(ai_status="draft_ready", draft_response="Hi there")
            )
            await session.commit()

        detail = (await client.get(f"/api/tickets/{row.id}")).json()["ticket"]
        listed = (await client.get("/api/tickets")).json()["items"][0]
        assert detail["aiStatus"] == listed["aiStatus"] == "draft_ready"
        assert listed["draftResponse"] == "Hi there"
        assert dict_redis.store == {}


class TestTicketMutations:
    @pytest.fixture
    async def ticket(self, seed, new_customer, new_ticket):
        owner = new_customer()
        await seed(owner)
        row = new_ticket(owner)
        await seed(row)
        return row

    async def test_get_ticket(self, client, outsider, ticket):
        assert (await client.get(f"/api/tickets/{ticket.id}")).status_code == 200
        response = await outsider.get(f"/api/tickets/{ticket.id}")
        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Ticket not found."

    async def test_patch_content_refreshes_excerpt(self, client, ticket):
        response = await client.patch(f"/api/tickets/{ticket.id}", json={"content": "New   body\ntext"})
        assert response.status_code == 200
        updated = response.json()["ticket"]
        assert updated["content"] == "New   body\ntext"
        assert updated["excerpt"] == "New body text"

    async def test_patch_status(self, client, ticket):
        response = await client.patch(f"/api/tickets/{ticket.id}", json={"status": "resolved"})
        assert response.json()["ticket"]["status"] == "resolved"

    async def test_patch_draft_response_can_be_cleared(self, client, ticket):
        path = f"/api/tickets/{ticket.id}"
        set_draft = await client.patch(path, json={"draftResponse": "Hello!"})
        assert set_draft.json()["ticket"]["draftResponse"] == "Hello!"
        cleared = await client.patch(path, json={"draftResponse": None})
        assert cleared.json()["ticket"]["draftResponse"] is None

    async def test_repeated_patch_keeps_updated_at(self, client, ticket):
        path = f"/api/tickets/{ticket.id}"
        first = await client.patch(path, json={"priority": "low"})
        second = await client.patch(path, json={"priority": "low"})
        assert first.json() == second.json()

    async def test_null_subject_rejected(self, client, ticket):
        response = await client.patch(f"/api/tickets/{ticket.id}", json={"subject": None})
        assert response.status_code == 400

    async def test_patch_other_org(self, outsider, ticket):
        response = await outsider.patch(f"/api/tickets/{ticket.id}", json={"status": "resolved"})
        assert response.status_code == 404

    async def test_archive_is_idempotent(self, client, ticket):
        first = await client.post(f"/api/tickets/{ticket.id}/archive")
        second = await client.post(f"/api/tickets/{ticket.id}/archive")
        assert first.status_code == 200
        archived_at = first.json()["ticket"]["archivedAt"]
        assert archived_at is not None
        assert second.json()["ticket"]["archivedAt"] == archived_at
        assert second.json()["ticket"]["updatedAt"] == first.json()["ticket"]["updatedAt"]

    async def test_archive_other_org(self, outsider, ticket):
        assert (await outsider.post(f"/api/tickets/{ticket.id}/archive")).status_code == 404


class TestTicketMessages:
    @pytest.fixture
    async def thread(self, seed, new_customer, new_ticket):
        owner = new_customer()
        await seed(owner)
        ticket = new_ticket(owner)
        await seed(ticket)
        start = datetime(2026, 3, 1, 9, 0, 0)
        messages = [
            TicketMessage(
                id=uuid.uuid4(),
                org_id=ORG_A,
                ticket_id=ticket.id,
                author_type="customer" if i % 2 == 0 else "agent",
                content=f"message {i}",
                created_at=start + timedelta(minutes=i),
            )
            for i in range(7)
        ]
        await seed(*messages)
        return ticket, messages

    async def test_oldest_first_by_default(self, client, thread):
        ticket, messages = thread
        response = await client.get(f"/api/tickets/{ticket.id}/messages")
        assert [m["content"] for m in response.json()["items"]] == [m.content for m in messages]

    async def test_paginates(self, client, thread):
        ticket, messages = thread
        path = f"/api/tickets/{ticket.id}/messages"
        first = (await client.get(path, params={"limit": "4"})).json()
        second = (await client.get(path, params={"limit": "4", "cursor": first["nextCursor"]})).json()
        assert [m["content"] for m in first["items"] + second["items"]] == [m.content for m in messages]
        assert second["nextCursor"] is None

    async def test_newest_first(self, client, thread):
        ticket, _ = thread
        response = await client.get(f"/api/tickets/{ticket.id}/messages", params={"order": "desc", "limit": "1"})
        assert response.json()["items"][0]["content"] == "message 6"

    async def test_other_org_thread_not_found(self, outsider, thread):
        ticket, _ = thread
        response = await outsider.get(f"/api/tickets/{ticket.id}/messages")
        assert response.status_code == 404

    async def test_post_message_defaults_to_agent(self, client, thread):
        ticket, _ = thread
        response = await client.post(f"/api/tickets/{ticket.id}/messages", json={"content": "On it!"})
        assert response.status_code == 200
        message = response.json()["message"]
        assert message["authorType"] == "agent"
        assert message["ticketId"] == str(ticket.id)

    async def test_post_to_other_org_ticket(self, outsider, thread):
        ticket, _ = thread
        response = await outsider.post(f"/api/tickets/{ticket.id}/messages", json={"content": "hi"})
        assert response.status_code == 404


class TestTriggerAIRun:
    @pytest.fixture
    async def ticket(self, seed, new_customer, new_ticket):
        owner = new_customer()
        await seed(owner)
        row = new_ticket(owner)
        await seed(row)
        return row

    async def test_disabled_returns_no_run(self, ai_client, ticket, mock_redis):
        response = await ai_client.post(f"/api/tickets/{ticket.id}/ai/run")
        assert response.status_code == 200
        assert response.json()["runId"] is None
        mock_redis.rpush.assert_not_awaited()

    async def test_queues_run(self, ai_client, ai_enabled, ticket, mock_redis):
        response = await ai_client.post(f"/api/tickets/{ticket.id}/ai/run")
        body = response.json()
        assert body["runId"] is not None
        assert body["ticket"]["latestRunId"] == body["runId"]
        assert body["ticket"]["aiStatus"] == "pending"
        mock_redis.rpush.assert_awaited_once()

    async def test_active_run_is_reused(self, ai_client, ai_enabled, ticket, mock_redis):
        first = (await ai_client.post(f"/api/tickets/{ticket.id}/ai/run")).json()
        second = (await ai_client.post(f"/api/tickets/{ticket.id}/ai/run", json={"force": False})).json()
        assert second["runId"] == first["runId"]
        assert mock_redis.rpush.await_count == 1

    async def test_force_queues_new_run(self, ai_client, ai_enabled, ticket, mock_redis):
        first = (await ai_client.post(f"/api/tickets/{ticket.id}/ai/run")).json()
        second = (await ai_client.post(f"/api/tickets/{ticket.id}/ai/run", json={"force": True})).json()
        assert second["runId"] != first["runId"]
        assert second["ticket"]["latestRunId"] == second["runId"]
        assert mock_redis.rpush.await_count == 2

    async def test_finished_run_is_not_reused(self, ai_client, ai_enabled, ticket, session_factory):
        first = (await ai_client.post(f"/api/tickets/{ticket.id}/ai/run")).json()
        async with session_factory() as db:
            run = await db.get(AIRun, uuid.UUID(first["runId"]))
            run.status = "done"
            await db.commit()
        second = (await ai_client.post(f"/api/tickets/{ticket.id}/ai/run")).json()
        assert second["runId"] != first["runId"]

    async def test_unparseable_body_means_no_options(self, ai_client, ai_enabled, ticket):
        response = await ai_client.post(
            f"/api/tickets/{ticket.id}/ai/run",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 200
        assert response.json()["runId"] is not None

    async def test_invalid_force_rejected(self, ai_client, ai_enabled, ticket):
        response = await ai_client.post(f"/api/tickets/{ticket.id}/ai/run", json={"force": "maybe"})
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["message"] == "Invalid request body."
        assert error["details"][0]["loc"] == ["force"]

    async def test_dispatch_failure_still_returns_run(self, ai_client, ai_enabled, ticket, mock_redis):
        mock_redis.rpush.side_effect = RedisConnectionError("down")
        response = await ai_client.post(f"/api/tickets/{ticket.id}/ai/run")
        assert response.status_code == 200
        assert response.json()["runId"] is not None

    async def test_other_org_ticket(self, make_client, ai_enabled, ticket):
        outsider = await make_client(str(ORG_B))
        response = await outsider.post(f"/api/tickets/{ticket.id}/ai/run")
        assert response.status_code == 404
