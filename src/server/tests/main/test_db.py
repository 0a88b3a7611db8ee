import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from main.db import MongoManager, sanitize_map_key

TEST_USER_ID = "test-user-123"

@pytest.fixture
def manager():
    """A MongoManager with its collections replaced by mocks, so no client is opened."""
    db_manager = MongoManager.__new__(MongoManager)
    for name in (
        "chat_scan_records_collection",
        "user_preferences_collection",
        "user_facts_collection",
        "scan_tasks_collection",
    ):
        collection = AsyncMock()
        collection.update_one.return_value = MagicMock(matched_count=0, upserted_id="new-id")
        setattr(db_manager, name, collection)
    return db_manager

# --- sanitize_map_key ---

@pytest.mark.parametrize("raw, expected", [
    ("tone", "tone"),
    ("food.favorite", "food_favorite"),
    ("$where", "where"),
    ("$$a.b.c", "a_b_c"),
])
def test_sanitize_map_key(raw, expected):
    assert sanitize_map_key(raw) == expected

# --- Scan records ---

@pytest.mark.asyncio
async def test_upsert_scan_record_increments_in_one_upsert(manager):
    last_seen = datetime.datetime(2024, 5, 1, 12, 0, tzinfo=datetime.timezone.utc)

    written = await manager.upsert_scan_record("chat-1", TEST_USER_ID, last_seen, 7)

    assert written is True
    manager.chat_scan_records_collection.update_one.assert_called_once()
    call = manager.chat_scan_records_collection.update_one.call_args
    query, update = call.args
    assert query == {"chat_id": "chat-1"}
    assert update["$inc"] == {"scanned_message_count": 7, "scan_version": 1}
    assert update["$set"]["user_id"] == TEST_USER_ID
    assert update["$set"]["last_message_timestamp"] == last_seen
    assert update["$set"]["last_scanned_at"].tzinfo is not None
    assert call.kwargs == {"upsert": True}

# --- Preferences and facts ---

@pytest.mark.asyncio
async def test_set_user_preferences_uses_sanitized_dotted_paths(manager):
    count = await manager.set_user_preferences(TEST_USER_ID, {"a.b": "1", "$x": "2", "tone": "casual"})

    assert count == 3
    call = manager.user_preferences_collection.update_one.call_args
    query, update = call.args
    assert query == {"user_id": TEST_USER_ID}
    set_ops = dict(update["$set"])
    assert isinstance(set_ops.pop("last_updated"), datetime.datetime)
    assert set_ops == {"preferences.a_b": "1", "preferences.x": "2", "preferences.tone": "casual"}
    assert update["$setOnInsert"]["user_id"] == TEST_USER_ID
    assert "created_at" in update["$setOnInsert"]
    assert call.kwargs == {"upsert": True}

@pytest.mark.asyncio
async def test_set_user_facts_writes_the_facts_document(manager):
    count = await manager.set_user_facts(TEST_USER_ID, {"work_employer": "Acme"})

    assert count == 1
    manager.user_preferences_collection.update_one.assert_not_called()
    _, update = manager.user_facts_collection.update_one.call_args.args
    assert update["$set"]["facts.work_employer"] == "Acme"

@pytest.mark.asyncio
async def test_set_with_no_entries_writes_nothing(manager):
    assert await manager.set_user_preferences(TEST_USER_ID, {}) == 0
    manager.user_preferences_collection.update_one.assert_not_called()

@pytest.mark.asyncio
async def test_delete_counts_only_existing_keys(manager):
    manager.user_preferences_collection.find_one.return_value = {"preferences": {"tone": "casual", "diet": "vegan"}}

    deleted = await manager.delete_user_preferences(TEST_USER_ID, ["tone", "missing"])

    assert deleted == 1
    manager.user_preferences_collection.find_one.assert_called_once_with({"user_id": TEST_USER_ID}, {"preferences": 1})
    query, update = manager.user_preferences_collection.update_one.call_args.args
    assert query == {"user_id": TEST_USER_ID}
    assert update["$unset"] == {"preferences.tone": ""}
    assert isinstance(update["$set"]["last_updated"], datetime.datetime)

@pytest.mark.asyncio
async def test_delete_of_unknown_keys_does_not_write(manager):
    manager.user_facts_collection.find_one.return_value = {"facts": {"work_employer": "Acme"}}

    assert await manager.delete_user_facts(TEST_USER_ID, ["nope"]) == 0
    manager.user_facts_collection.update_one.assert_not_called()

@pytest.mark.asyncio
async def test_delete_without_a_document_returns_zero(manager):
    manager.user_facts_collection.find_one.return_value = None

    assert await manager.delete_user_facts(TEST_USER_ID, ["work_employer"]) == 0
    manager.user_facts_collection.update_one.assert_not_called()

# --- Scan tasks ---

@pytest.mark.asyncio
async def test_scan_task_lookup_is_scoped_to_its_owner(manager):
    await manager.record_scan_task("task-abc", TEST_USER_ID, True)
    stored = manager.scan_tasks_collection.insert_one.call_args.args[0]
    assert stored["task_id"] == "task-abc"
    assert stored["user_id"] == TEST_USER_ID
    assert stored["force_scan"] is True

    manager.scan_tasks_collection.find_one.return_value = None
    assert await manager.get_scan_task("task-abc", "other-user") is None
    manager.scan_tasks_collection.find_one.assert_called_once_with({"task_id": "task-abc", "user_id": "other-user"}, {"_id": 0})
