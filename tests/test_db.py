"""Tests for the SQLite schema and DatabaseStore."""

import stat
from datetime import UTC, datetime
from pathlib import Path

import aiosqlite
import pytest

from action_agent.agent.models import UserPortrait, UserProfile
from action_agent.core.errors import InviteCodeError, MemoryConflictError
from action_agent.db.models import REQUIRED_TABLES, init_database, verify_schema
from action_agent.db.store import (
    INVITE_CODE_ALPHABET,
    Agent,
    DatabaseStore,
    Memory,
    OAuth2Provider,
    UserOrder,
)


def _memory(**overrides) -> Memory:
    data = {
        "user_id": "user-1",
        "channel_label": "Gmail",
        "ref_id": "msg-001",
        "type": "action",
        "title": "Pay invoice by Friday",
        "content": {"summary": "Pay invoice by Friday", "importanceRating": 82},
        "labels": ["weekly", "high"],
        "priority": 4,
    }
    data.update(overrides)
    return Memory(**data)


@pytest.fixture
async def user_store(store: DatabaseStore) -> DatabaseStore:
    await store.upsert_user("user-1", name="Ada Lovelace", email="ada@example.com")
    return store


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


class TestSchema:
    async def test_creates_all_tables(self, data_dir: Path) -> None:
        db_path = data_dir / "schema.db"
        await init_database(db_path)

        async with aiosqlite.connect(db_path) as db:
            cursor = await db.execute("SELECT name FROM sqlite_master WHERE type='table'")
            tables = {row[0] for row in await cursor.fetchall()}

        assert set(REQUIRED_TABLES) <= tables
        assert await verify_schema(db_path)

    async def test_wal_mode_and_permissions(self, data_dir: Path) -> None:
        db_path = data_dir / "wal.db"
        await init_database(db_path)

        async with aiosqlite.connect(db_path) as db:
            cursor = await db.execute("PRAGMA journal_mode")
            mode = (await cursor.fetchone())[0]

        assert mode == "wal"
        assert stat.S_IMODE(db_path.stat().st_mode) == 0o600

    async def test_verify_schema_missing_file(self, data_dir: Path) -> None:
        assert not await verify_schema(data_dir / "missing.db")

    async def test_initialize_is_idempotent(self, store: DatabaseStore) -> None:
        await store.initialize()
        await init_database(store.db_path)
        assert await verify_schema(store.db_path)

    async def test_checkpoint_wal(self, store: DatabaseStore) -> None:
        await store.checkpoint_wal()
        assert await verify_schema(store.db_path)


# ---------------------------------------------------------------------------
# Users, profiles and portraits
# ---------------------------------------------------------------------------


class TestUsersAndProfiles:
    async def test_upsert_user_keeps_existing_fields(self, user_store: DatabaseStore) -> None:
        await user_store.upsert_user("user-1", name="Ada King")

        user = await user_store.get_user("user-1")
        assert user.name == "Ada King"
        assert user.email == "ada@example.com"

    async def test_unknown_user(self, store: DatabaseStore) -> None:
        assert await store.get_user("nobody") is None

    async def test_profile_round_trip_keeps_extra_settings(
        self, user_store: DatabaseStore, profile: UserProfile
    ) -> None:
        await user_store.save_profile(profile)

        loaded = await user_store.get_profile("user-1")

        assert loaded.timezone == "Europe/London"
        assert loaded.metadata.name == "Ada Lovelace"
        assert loaded.personalized_settings.labels == ["work"]
        assert loaded.personalized_settings.extensions == {"digest_hour": 8}
        assert loaded.location.model_dump()["city"] == "London"

    async def test_missing_profile(self, user_store: DatabaseStore) -> None:
        assert await user_store.get_profile("user-1") is None

    async def test_latest_portrait_wins(self, user_store: DatabaseStore) -> None:
        for portrait_id, day, tasks in (("p-old", 1, 2), ("p-new", 5, 9)):
            await user_store.save_portrait(
                UserPortrait.model_validate(
                    {
                        "id": portrait_id,
                        "user_id": "user-1",
                        "data": {"metrics": {"open_tasks": {"value": tasks}}},
                        "calculated_at": datetime(2026, 1, day, tzinfo=UTC),
                    }
                )
            )

        latest = await user_store.get_latest_portrait("user-1")

        assert latest.id == "p-new"
        assert latest.data.metrics["open_tasks"].value == 9


# ---------------------------------------------------------------------------
# Memories
# ---------------------------------------------------------------------------


class TestMemories:
    async def test_insert_and_fetch(self, user_store: DatabaseStore) -> None:
        memory_id = await user_store.upsert_memory(_memory())

        memory = await user_store.get_memory(memory_id)

        assert memory.ref_id == "msg-001"
        assert memory.content["importanceRating"] == 82
        assert memory.labels == ["weekly", "high"]
        assert memory.status == "active"
        assert memory.created_at.tzinfo is not None

    async def test_unique_per_channel_and_ref(self, user_store: DatabaseStore) -> None:
        first_id = await user_store.upsert_memory(_memory())
        second_id = await user_store.upsert_memory(_memory(title="Updated", priority=1))

        assert first_id == second_id
        memories = await user_store.list_memories("user-1")
        assert len(memories) == 1
        assert memories[0].title == "Updated"

    async def test_same_ref_on_other_channel_is_separate(self, user_store: DatabaseStore) -> None:
        await user_store.upsert_memory(_memory())
        await user_store.upsert_memory(_memory(channel_label="Notion"))

        assert len(await user_store.list_memories("user-1")) == 2

    async def test_other_users_row_is_not_overwritten(self, user_store: DatabaseStore) -> None:
        await user_store.upsert_user("user-2", name="Grace Hopper")
        memory_id = await user_store.upsert_memory(_memory(title="Ada's invoice"))

        with pytest.raises(MemoryConflictError):
            await user_store.upsert_memory(_memory(user_id="user-2", title="Grace's invoice"))

        stored = await user_store.get_memory(memory_id)
        assert stored.user_id == "user-1"
        assert stored.title == "Ada's invoice"
        assert await user_store.list_memories("user-2") == []

    async def test_upsert_preserves_status(self, user_store: DatabaseStore) -> None:
        memory_id = await user_store.upsert_memory(_memory())
        await user_store.update_memory_status(memory_id, "done")

        await user_store.upsert_memory(_memory(title="Re-ingested"))

        assert (await user_store.get_memory(memory_id)).status == "done"

    async def test_get_by_ref(self, user_store: DatabaseStore) -> None:
        await user_store.upsert_memory(_memory())

        assert (await user_store.get_memory_by_ref("Gmail", "msg-001")).title
        assert await user_store.get_memory_by_ref("Gmail", "msg-999") is None

    async def test_list_orders_by_priority_and_filters(self, user_store: DatabaseStore) -> None:
        low_id = await user_store.upsert_memory(_memory(ref_id="a", priority=1))
        await user_store.upsert_memory(_memory(ref_id="b", priority=5))
        await user_store.upsert_memory(_memory(ref_id="c", type="fact", priority=3))
        await user_store.update_memory_status(low_id, "ignored")

        ordered = await user_store.list_memories("user-1")
        assert [m.ref_id for m in ordered] == ["b", "c", "a"]

        actions = await user_store.list_memories("user-1", status="active", memory_type="action")
        assert [m.ref_id for m in actions] == ["b"]

        assert len(await user_store.list_memories("user-1", limit=1)) == 1

    async def test_update_status_unknown_memory(self, user_store: DatabaseStore) -> None:
        assert await user_store.update_memory_status("missing", "done") is False

    async def test_invalid_status_rejected(self, user_store: DatabaseStore) -> None:
        memory_id = await user_store.upsert_memory(_memory())
        with pytest.raises(ValueError):
            await user_store.update_memory_status(memory_id, "archived")

    async def test_activity_log(self, user_store: DatabaseStore) -> None:
        await user_store.log_activity("user-1", "action_ingested", "Gmail", {"ref_id": "msg-1"})

        logs = await user_store.get_activity_logs("user-1")

        assert len(logs) == 1
        assert logs[0].integration_id == "Gmail"
        assert logs[0].metadata == {"ref_id": "msg-1"}


# ---------------------------------------------------------------------------
# Invite codes
# ---------------------------------------------------------------------------


class TestInviteCodes:
    async def test_create_unique_codes(self, store: DatabaseStore) -> None:
        codes = await store.create_invite_codes(count=5, code_length=10, identifier="beta")

        assert len({c.code for c in codes}) == 5
        for invite in codes:
            assert len(invite.code) == 10
            assert set(invite.code) <= set(INVITE_CODE_ALPHABET)
            assert invite.expires_at > datetime.now(UTC)

    async def test_redeem_marks_used(self, store: DatabaseStore) -> None:
        (invite,) = await store.create_invite_codes()

        redeemed = await store.redeem_invite_code(invite.code, user_id="user-1")

        assert redeemed.status == "used"
        stored = await store.get_invite_code(invite.code)
        assert stored.status == "used"
        assert stored.used_at is not None
        assert stored.identifier == "user-1"

    async def test_redeem_twice_fails(self, store: DatabaseStore) -> None:
        (invite,) = await store.create_invite_codes()
        await store.redeem_invite_code(invite.code)

        with pytest.raises(InviteCodeError) as exc_info:
            await store.redeem_invite_code(invite.code)

        assert exc_info.value.reason == "used"

    async def test_unknown_code(self, store: DatabaseStore) -> None:
        with pytest.raises(InviteCodeError) as exc_info:
            await store.redeem_invite_code("NOPE1234")
        assert exc_info.value.reason == "not_found"

    async def test_expired_code_is_flipped(self, store: DatabaseStore) -> None:
        (invite,) = await store.create_invite_codes(expire_after_days=-1)

        with pytest.raises(InviteCodeError) as exc_info:
            await store.redeem_invite_code(invite.code)

        assert exc_info.value.reason == "expired"
        assert (await store.get_invite_code(invite.code)).status == "expired"

    async def test_no_expiry(self, store: DatabaseStore) -> None:
        (invite,) = await store.create_invite_codes(expire_after_days=None)
        assert invite.expires_at is None
        assert (await store.redeem_invite_code(invite.code)).status == "used"

    async def test_disabled_code(self, store: DatabaseStore) -> None:
        (invite,) = await store.create_invite_codes()
        assert await store.disable_invite_code(invite.code)
        assert not await store.disable_invite_code(invite.code)

        with pytest.raises(InviteCodeError) as exc_info:
            await store.redeem_invite_code(invite.code)
        assert exc_info.value.reason == "disabled"


# ---------------------------------------------------------------------------
# Devices, OAuth, jobs, orders, agents
# ---------------------------------------------------------------------------


class TestDevices:
    async def test_register_and_reactivate(self, user_store: DatabaseStore) -> None:
        device = await user_store.register_device("user-1", "dev-1", "tok-1", "ios", "iPhone")
        assert device.is_active
        assert device.last_used_at > 0

        assert await user_store.deactivate_device("user-1", "dev-1")
        assert await user_store.get_active_devices("user-1") == []

        refreshed = await user_store.register_device("user-1", "dev-1", "tok-2", "ios")
        assert refreshed.id == device.id
        assert refreshed.token == "tok-2"
        assert refreshed.device_name == "iPhone"
        assert [d.device_id for d in await user_store.get_active_devices("user-1")] == ["dev-1"]

    async def test_touch_updates_last_used(self, user_store: DatabaseStore) -> None:
        device = await user_store.register_device("user-1", "dev-1", "tok-1", "android")

        await user_store.touch_device("user-1", "dev-1")

        (touched,) = await user_store.get_active_devices("user-1")
        assert touched.last_used_at >= device.last_used_at


class TestOAuth:
    async def test_connection_errors_and_reset(self, user_store: DatabaseStore) -> None:
        provider_id = await user_store.upsert_oauth_provider(
            OAuth2Provider(id="prov-1", name="google", display_name="Google", config={"scope": "x"})
        )
        connection = await user_store.upsert_oauth_connection(
            "user-1", provider_id, {"access_token": "a"}
        )

        assert await user_store.record_connection_error(connection.id, "invalid_grant") == 1
        assert await user_store.record_connection_error(connection.id, "invalid_grant") == 2
        errored = await user_store.get_oauth_connection("user-1", provider_id)
        assert errored.status == "error"
        assert errored.error_message == "invalid_grant"

        refreshed = await user_store.upsert_oauth_connection(
            "user-1", provider_id, {"access_token": "b"}
        )
        assert refreshed.id == connection.id
        assert refreshed.status == "active"
        assert refreshed.error_count == 0
        assert refreshed.credentials == {"access_token": "b"}

    async def test_set_connection_status(self, user_store: DatabaseStore) -> None:
        provider_id = await user_store.upsert_oauth_provider(
            OAuth2Provider(id="prov-1", name="google", display_name="Google", config={})
        )
        connection = await user_store.upsert_oauth_connection(
            "user-1", provider_id, {"access_token": "a"}
        )

        await user_store.set_connection_status(connection.id, "revoked")

        assert (await user_store.get_oauth_connection("user-1", provider_id)).status == "revoked"

    async def test_provider_upsert_by_name(self, store: DatabaseStore) -> None:
        await store.upsert_oauth_provider(
            OAuth2Provider(id="prov-1", name="notion", display_name="Notion", config={})
        )
        provider_id = await store.upsert_oauth_provider(
            OAuth2Provider(id="prov-2", name="notion", display_name="Notion API", config={})
        )

        assert provider_id == "prov-1"
        assert (await store.get_oauth_provider("notion")).display_name == "Notion API"


class TestJobs:
    async def test_job_lifecycle(self, user_store: DatabaseStore) -> None:
        job_id = await user_store.create_job("user-1", context={"source": "Gmail"})

        assert await user_store.start_job(job_id)
        assert not await user_store.start_job(job_id)

        await user_store.complete_job(job_id, {"memories": 3})
        job = await user_store.get_job(job_id)
        assert job.status == "completed"
        assert job.result == {"memories": 3}
        assert job.completed_at is not None

    async def test_failed_job(self, user_store: DatabaseStore) -> None:
        job_id = await user_store.create_job("user-1")
        await user_store.fail_job(job_id, "model timeout")

        job = await user_store.get_job(job_id)
        assert job.status == "failed"
        assert job.error_message == "model timeout"


class TestOrdersAndAgents:
    async def test_orders(self, user_store: DatabaseStore) -> None:
        await user_store.save_order(
            UserOrder(
                id="ORD-2026-001",
                user_id="user-1",
                subscription_id="sub-1",
                plan_id="pro",
                amount="19.90",
                start_date=datetime(2026, 1, 1, tzinfo=UTC),
                end_date=datetime(2026, 2, 1, tzinfo=UTC),
            )
        )
        assert await user_store.update_order_status("ORD-2026-001", "active")

        (order,) = await user_store.get_user_orders("user-1")
        assert order.status == "active"
        assert order.amount == "19.90"
        assert order.currency == "CNY"

    async def test_agent_upsert_by_name(self, user_store: DatabaseStore) -> None:
        await user_store.save_agent(
            Agent(id="a-1", name="action-extractor", configuration={"v": 1}, created_by="user-1")
        )
        await user_store.save_agent(
            Agent(id="a-2", name="action-extractor", configuration={"v": 2}, created_by="user-1")
        )

        agent = await user_store.get_agent("action-extractor")
        assert agent.id == "a-1"
        assert agent.configuration == {"v": 2}


# ---------------------------------------------------------------------------
# Messaging
# ---------------------------------------------------------------------------


class TestMessaging:
    async def test_processed_message_is_idempotent(self, store: DatabaseStore) -> None:
        assert await store.mark_message_processed("wamid-1", "+4400", {"text": "hi"})
        assert not await store.mark_message_processed("wamid-1", "+4400", {"text": "hi"})

    async def test_binding_consumed_once(self, user_store: DatabaseStore) -> None:
        binding = await user_store.create_whatsapp_binding("+4400")

        bound = await user_store.consume_whatsapp_binding(binding.token, "user-1")

        assert bound.status == "used"
        assert bound.used_by == "user-1"
        assert await user_store.consume_whatsapp_binding(binding.token, "user-1") is None

    async def test_expired_binding(self, user_store: DatabaseStore) -> None:
        binding = await user_store.create_whatsapp_binding("+4400", ttl_minutes=-1)
        assert await user_store.consume_whatsapp_binding(binding.token, "user-1") is None


# ---------------------------------------------------------------------------
# LLM request log
# ---------------------------------------------------------------------------


class TestLLMLogs:
    async def test_filters_by_ref_id(self, store: DatabaseStore) -> None:
        for ref in ("msg-1", "msg-2"):
            await store.log_llm_request(
                task_type="action_extraction",
                model="claude-test-model",
                prompt={"messages": []},
                ref_id=ref,
            )

        logs = await store.get_llm_logs(ref_id="msg-2")

        assert len(logs) == 1
        assert logs[0].prompt_json == {"messages": []}
        assert logs[0].response_json is None

    async def test_prune_removes_old_rows(self, store: DatabaseStore) -> None:
        await store.log_llm_request(
            task_type="action_extraction", model="m", prompt={}, ref_id="new"
        )
        async with aiosqlite.connect(store.db_path) as db:
            await db.execute(
                """
                INSERT INTO llm_request_log (timestamp, task_type, model, prompt_json, ref_id)
                VALUES ('2020-01-01 00:00:00', 'action_extraction', 'm', '{}', 'old')
                """
            )
            await db.commit()

        assert await store.prune_llm_logs(retention_days=30) == 1
        assert [log.ref_id for log in await store.get_llm_logs()] == ["new"]
