# src/server/main/db.py
import datetime
import uuid
import logging
import motor.motor_asyncio
from pymongo import ASCENDING, DESCENDING, IndexModel, ReturnDocument
from typing import Dict, List, Optional, Any

from main.config import MONGO_URI, MONGO_DB_NAME, DB_ENCRYPTION_ENABLED
from main.auth.utils import aes_encrypt, aes_decrypt

def _encrypt_field(data: Any) -> Any:
    if not DB_ENCRYPTION_ENABLED or data is None:
        return data
    return aes_encrypt(data)

def _decrypt_field(data: Any) -> Any:
    if not DB_ENCRYPTION_ENABLED or data is None or not isinstance(data, str):
        return data
    try:
        return aes_decrypt(data)
    except Exception:
        return data

def _encrypt_doc(doc: Dict, fields: List[str]):
    if not DB_ENCRYPTION_ENABLED or not doc:
        return
    for field in fields:
        if field in doc and doc[field] is not None:
            doc[field] = _encrypt_field(doc[field])

def _decrypt_doc(doc: Optional[Dict], fields: List[str]):
    if not DB_ENCRYPTION_ENABLED or not doc:
        return
    for field in fields:
        if field in doc and doc[field] is not None:
            doc[field] = _decrypt_field(doc[field])

def _decrypt_docs(docs: List[Dict], fields: List[str]):
    if not DB_ENCRYPTION_ENABLED or not docs:
        return
    for doc in docs:
        _decrypt_doc(doc, fields)

def sanitize_map_key(key: str) -> str:
    """Makes a key safe to use inside a dotted $set/$unset path."""
    return str(key).replace(".", "_").lstrip("$")

USER_PROFILES_COLLECTION = "user_profiles"
CHATS_COLLECTION = "chats"
MESSAGES_COLLECTION = "messages"
AGENTS_COLLECTION = "agents"
CHAT_SCAN_RECORDS_COLLECTION = "chat_scan_records"
USER_PREFERENCES_COLLECTION = "user_preferences"
USER_FACTS_COLLECTION = "user_facts"
SCAN_TASKS_COLLECTION = "context_scan_tasks"

SENSITIVE_MESSAGE_FIELDS = ["content"]
NO_ID_PROJECTION = {"_id": 0}
SCAN_TASK_TTL_SECONDS = 7 * 24 * 3600

logger = logging.getLogger(__name__)

class MongoManager:
    def __init__(self):
        self.client = motor.motor_asyncio.AsyncIOMotorClient(MONGO_URI, tz_aware=True)
        self.db = self.client[MONGO_DB_NAME]

        self.user_profiles_collection = self.db[USER_PROFILES_COLLECTION]
        self.chats_collection = self.db[CHATS_COLLECTION]
        self.messages_collection = self.db[MESSAGES_COLLECTION]
        self.agents_collection = self.db[AGENTS_COLLECTION]
        self.chat_scan_records_collection = self.db[CHAT_SCAN_RECORDS_COLLECTION]
        self.user_preferences_collection = self.db[USER_PREFERENCES_COLLECTION]
        self.user_facts_collection = self.db[USER_FACTS_COLLECTION]
        self.scan_tasks_collection = self.db[SCAN_TASKS_COLLECTION]

        print(f"[{datetime.datetime.now()}] [MainServer_MongoManager] Initialized. Database: {MONGO_DB_NAME}")

    async def initialize_db(self):
        print(f"[{datetime.datetime.now()}] [MainServer_DB_INIT] Ensuring indexes for MongoManager collections...")

        collections_with_indexes = {
            self.user_profiles_collection: [
                IndexModel([("user_id", ASCENDING)], unique=True, name="user_id_unique_idx"),
            ],
            self.chats_collection: [
                IndexModel([("chat_id", ASCENDING)], unique=True, name="chat_id_unique_idx"),
                IndexModel([("user_id", ASCENDING), ("created_at", DESCENDING)], name="chat_user_created_idx"),
                IndexModel([("user_id", ASCENDING), ("agent_id", ASCENDING)], name="chat_user_agent_idx", sparse=True),
            ],
            self.messages_collection: [
                IndexModel([("message_id", ASCENDING)], unique=True, name="message_id_unique_idx"),
                IndexModel([("chat_id", ASCENDING), ("timestamp", ASCENDING)], name="message_chat_timestamp_idx"),
            ],
            self.agents_collection: [
                IndexModel([("agent_id", ASCENDING)], unique=True, name="agent_id_unique_idx"),
                IndexModel([("user_id", ASCENDING)], name="agent_user_idx"),
            ],
            self.chat_scan_records_collection: [
                IndexModel([("chat_id", ASCENDING)], unique=True, name="scan_chat_id_unique_idx"),
                IndexModel([("user_id", ASCENDING)], name="scan_user_idx"),
            ],
            self.user_preferences_collection: [
                IndexModel([("user_id", ASCENDING)], unique=True, name="preferences_user_unique_idx"),
            ],
            self.user_facts_collection: [
                IndexModel([("user_id", ASCENDING)], unique=True, name="facts_user_unique_idx"),
            ],
            self.scan_tasks_collection: [
                IndexModel([("task_id", ASCENDING)], unique=True, name="scan_task_id_unique_idx"),
                IndexModel([("created_at", ASCENDING)], name="scan_task_created_ttl_idx", expireAfterSeconds=SCAN_TASK_TTL_SECONDS),
            ],
        }

        for collection, indexes in collections_with_indexes.items():
            try:
                await collection.create_indexes(indexes)
                print(f"[{datetime.datetime.now()}] [MainServer_DB_INIT] Indexes ensured for: {collection.name}")
            except Exception as e:
                print(f"[{datetime.datetime.now()}] [MainServer_DB_ERROR] Index creation for {collection.name}: {e}")

    # --- User Profile Methods ---
    async def get_connected_apps(self, user_id: str) -> List[str]:
        doc = await self.user_profiles_collection.find_one({"user_id": user_id}, {"connected_apps": 1})
        return doc.get("connected_apps", []) if doc else []

    async def set_app_connected(self, user_id: str, app_name: str, connected: bool) -> bool:
        now_utc = datetime.datetime.now(datetime.timezone.utc)
        if connected:
            update = {"$addToSet": {"connected_apps": app_name}}
        else:
            update = {"$pull": {"connected_apps": app_name}}
        update["$set"] = {"last_updated": now_utc}
        update["$setOnInsert"] = {"user_id": user_id, "created_at": now_utc}
        result = await self.user_profiles_collection.update_one({"user_id": user_id}, update, upsert=True)
        return result.matched_count > 0 or result.upserted_id is not None

    # --- Chat Methods ---
    async def create_chat(self, user_id: str, title: str, agent_id: Optional[str] = None) -> Dict:
        chat_doc = {
            "chat_id": str(uuid.uuid4()),
            "user_id": user_id,
            "agent_id": agent_id,
            "title": title or "New Chat",
            "created_at": datetime.datetime.now(datetime.timezone.utc),
        }
        await self.chats_collection.insert_one(chat_doc)
        chat_doc.pop("_id", None)
        logger.info(f"Created chat {chat_doc['chat_id']} for user {user_id}")
        return chat_doc

    async def get_chat(self, chat_id: str, user_id: str) -> Optional[Dict]:
        return await self.chats_collection.find_one({"chat_id": chat_id, "user_id": user_id}, NO_ID_PROJECTION)

    async def get_chats_for_user(self, user_id: str, agent_id: Optional[str] = None) -> List[Dict]:
        query = {"user_id": user_id}
        if agent_id:
            query["agent_id"] = agent_id
        cursor = self.chats_collection.find(query, NO_ID_PROJECTION).sort("created_at", DESCENDING)
        return await cursor.to_list(length=None)

    async def delete_chat(self, chat_id: str, user_id: str) -> bool:
        result = await self.chats_collection.delete_one({"chat_id": chat_id, "user_id": user_id})
        if result.deleted_count == 0:
            return False
        await self.messages_collection.delete_many({"chat_id": chat_id})
        await self.chat_scan_records_collection.delete_one({"chat_id": chat_id})
        logger.info(f"Deleted chat {chat_id} for user {user_id} with its messages and scan record.")
        return True

    # --- Message Methods ---
    async def add_message(self, chat_id: str, role: str, content: str, agent_id: Optional[str] = None) -> Dict:
        message_doc = {
            "message_id": str(uuid.uuid4()),
            "chat_id": chat_id,
            "agent_id": agent_id,
            "role": role,
            "content": content,
            "timestamp": datetime.datetime.now(datetime.timezone.utc),
        }
        stored_doc = message_doc.copy()
        _encrypt_doc(stored_doc, SENSITIVE_MESSAGE_FIELDS)
        await self.messages_collection.insert_one(stored_doc)
        logger.info(f"Added {role} message to chat {chat_id}")
        return message_doc

    async def get_chat_messages(self, chat_id: str) -> List[Dict]:
        cursor = self.messages_collection.find({"chat_id": chat_id}, NO_ID_PROJECTION).sort("timestamp", ASCENDING)
        messages = await cursor.to_list(length=None)
        _decrypt_docs(messages, SENSITIVE_MESSAGE_FIELDS)
        return messages

    async def get_recent_messages(self, chat_id: str, limit: int) -> List[Dict]:
        """Returns the last `limit` messages of a chat, oldest first."""
        cursor = self.messages_collection.find({"chat_id": chat_id}, NO_ID_PROJECTION).sort("timestamp", DESCENDING).limit(limit)
        messages = await cursor.to_list(length=limit)
        _decrypt_docs(messages, SENSITIVE_MESSAGE_FIELDS)
        return messages[::-1]

    async def get_latest_message(self, chat_id: str) -> Optional[Dict]:
        return await self.messages_collection.find_one({"chat_id": chat_id}, NO_ID_PROJECTION, sort=[("timestamp", DESCENDING)])

    async def count_messages(self, chat_id: str) -> int:
        return await self.messages_collection.count_documents({"chat_id": chat_id})

    async def get_messages_after(self, chat_id: str, after: datetime.datetime, limit: int) -> List[Dict]:
        """Messages strictly newer than `after`, oldest first, at most `limit`."""
        cursor = self.messages_collection.find(
            {"chat_id": chat_id, "timestamp": {"$gt": after}}, NO_ID_PROJECTION
        ).sort("timestamp", ASCENDING).limit(limit)
        messages = await cursor.to_list(length=limit)
        _decrypt_docs(messages, SENSITIVE_MESSAGE_FIELDS)
        return messages

    # --- Agent Methods ---
    async def create_agent(self, user_id: str, agent_data: Dict) -> Dict:
        now_utc = datetime.datetime.now(datetime.timezone.utc)
        agent_doc = {
            **agent_data,
            "agent_id": str(uuid.uuid4()),
            "user_id": user_id,
            "created_at": now_utc,
            "updated_at": now_utc,
        }
        await self.agents_collection.insert_one(agent_doc)
        agent_doc.pop("_id", None)
        return agent_doc

    async def get_agent(self, agent_id: str, user_id: str) -> Optional[Dict]:
        return await self.agents_collection.find_one({"agent_id": agent_id, "user_id": user_id}, NO_ID_PROJECTION)

    async def get_agents_for_user(self, user_id: str) -> List[Dict]:
        cursor = self.agents_collection.find({"user_id": user_id}, NO_ID_PROJECTION).sort("created_at", DESCENDING)
        return await cursor.to_list(length=None)

    async def update_agent(self, agent_id: str, user_id: str, updates: Dict) -> Optional[Dict]:
        for protected in ("agent_id", "user_id", "created_at", "_id"):
            updates.pop(protected, None)
        updates["updated_at"] = datetime.datetime.now(datetime.timezone.utc)
        return await self.agents_collection.find_one_and_update(
            {"agent_id": agent_id, "user_id": user_id},
            {"$set": updates},
            projection=NO_ID_PROJECTION,
            return_document=ReturnDocument.AFTER,
        )

    async def delete_agent(self, agent_id: str, user_id: str) -> bool:
        result = await self.agents_collection.delete_one({"agent_id": agent_id, "user_id": user_id})
        return result.deleted_count > 0

    # --- Chat Scan Record Methods ---
    async def get_scan_record(self, chat_id: str) -> Optional[Dict]:
        return await self.chat_scan_records_collection.find_one({"chat_id": chat_id}, NO_ID_PROJECTION)

    async def upsert_scan_record(self, chat_id: str, user_id: str, last_message_timestamp: datetime.datetime, processed_count: int) -> bool:
        """
        Records a processed batch. $inc on an inserted document starts from zero,
        so a new record gets scan_version 1 and scanned_message_count == processed_count.
        """
        result = await self.chat_scan_records_collection.update_one(
            {"chat_id": chat_id},
            {
                "$set": {
                    "user_id": user_id,
                    "last_scanned_at": datetime.datetime.now(datetime.timezone.utc),
                    "last_message_timestamp": last_message_timestamp,
                },
                "$inc": {"scanned_message_count": processed_count, "scan_version": 1},
            },
            upsert=True,
        )
        return result.matched_count > 0 or result.upserted_id is not None

    # --- Scan Task Methods ---
    async def record_scan_task(self, task_id: str, user_id: str, force_scan: bool = False) -> None:
        await self.scan_tasks_collection.insert_one({
            "task_id": task_id,
            "user_id": user_id,
            "force_scan": force_scan,
            "created_at": datetime.datetime.now(datetime.timezone.utc),
        })

    async def get_scan_task(self, task_id: str, user_id: str) -> Optional[Dict]:
        """Only the user who queued a scan can see it."""
        return await self.scan_tasks_collection.find_one({"task_id": task_id, "user_id": user_id}, NO_ID_PROJECTION)

    # --- User Preference / Fact Methods ---
    async def get_user_preferences(self, user_id: str) -> Optional[Dict]:
        return await self.user_preferences_collection.find_one({"user_id": user_id}, NO_ID_PROJECTION)

    async def get_user_facts(self, user_id: str) -> Optional[Dict]:
        return await self.user_facts_collection.find_one({"user_id": user_id}, NO_ID_PROJECTION)

    async def set_user_preferences(self, user_id: str, entries: Dict[str, str]) -> int:
        return await self._set_map_entries(self.user_preferences_collection, "preferences", user_id, entries)

    async def set_user_facts(self, user_id: str, entries: Dict[str, str]) -> int:
        return await self._set_map_entries(self.user_facts_collection, "facts", user_id, entries)

    async def delete_user_preferences(self, user_id: str, keys: List[str]) -> int:
        return await self._unset_map_entries(self.user_preferences_collection, "preferences", user_id, keys)

    async def delete_user_facts(self, user_id: str, keys: List[str]) -> int:
        return await self._unset_map_entries(self.user_facts_collection, "facts", user_id, keys)

    async def _set_map_entries(self, collection, field: str, user_id: str, entries: Dict[str, str]) -> int:
        """Upserts the user's document and sets each key. Last write wins per key."""
        if not entries:
            return 0
        now_utc = datetime.datetime.now(datetime.timezone.utc)
        set_ops = {f"{field}.{sanitize_map_key(key)}": value for key, value in entries.items()}
        set_ops["last_updated"] = now_utc
        await collection.update_one(
            {"user_id": user_id},
            {"$set": set_ops, "$setOnInsert": {"user_id": user_id, "created_at": now_utc}},
            upsert=True,
        )
        logger.info(f"Set {len(entries)} {field} entries for user {user_id}")
        return len(entries)

    async def _unset_map_entries(self, collection, field: str, user_id: str, keys: List[str]) -> int:
        doc = await collection.find_one({"user_id": user_id}, {field: 1})
        if not doc:
            return 0
        existing = doc.get(field) or {}
        to_delete = [key for key in keys if key in existing]
        if not to_delete:
            return 0
        await collection.update_one(
            {"user_id": user_id},
            {
                "$unset": {f"{field}.{key}": "" for key in to_delete},
                "$set": {"last_updated": datetime.datetime.now(datetime.timezone.utc)},
            },
        )
        logger.info(f"Deleted {len(to_delete)} {field} entries for user {user_id}")
        return len(to_delete)

    async def close(self):
        if self.client:
            self.client.close()
            print(f"[{datetime.datetime.now()}] [MainServer_MongoManager] MongoDB connection closed.")
