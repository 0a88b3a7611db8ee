"""
Incremental scanning of a user's chats for preferences and facts.

Each chat has a scan record that remembers the timestamp of the last message
processed and how many messages have been processed. A scan picks up at most
BATCH_SIZE newer messages per chat, asks the LLM to extract preferences and
facts from the user-authored ones, merges them into the user's documents
(last write wins per key) and advances the scan record.
"""
import datetime
import json
import logging
from typing import Any, Dict, List, Tuple

from main.config import CONTEXT_EXTRACTION_MODEL, CONTEXT_SCAN_BATCH_SIZE
from main.llm import run_chat_completion
from workers.utils.text_utils import extract_first_json_object
from .prompts import context_extraction_system_prompt

logger = logging.getLogger(__name__)

BATCH_SIZE = CONTEXT_SCAN_BATCH_SIZE
EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)

def empty_extraction() -> Dict[str, Dict]:
    return {"preferences": {}, "facts": {}}

def as_utc(value: Any) -> datetime.datetime:
    """Normalizes stored timestamps (aware, naive-UTC, ISO string or missing) to aware UTC."""
    if value is None:
        return EPOCH
    if isinstance(value, str):
        value = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)

def stringify_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item) for item in value)
    if isinstance(value, dict):
        return json.dumps(value)
    return str(value)

def new_scan_record(chat_id: str, user_id: str) -> Dict[str, Any]:
    return {
        "chat_id": chat_id,
        "user_id": user_id,
        "last_scanned_at": EPOCH,
        "last_message_timestamp": EPOCH,
        "scan_version": 1,
        "scanned_message_count": 0,
    }

# --- Eligibility ---

async def check_if_chat_needs_scan(db_manager, chat_id: str, user_id: str, force_scan: bool) -> Tuple[bool, Dict[str, Any]]:
    scan_record = await db_manager.get_scan_record(chat_id)

    if not scan_record:
        return True, new_scan_record(chat_id, user_id)

    if force_scan:
        return True, scan_record

    latest_message = await db_manager.get_latest_message(chat_id)
    if not latest_message:
        return False, scan_record

    message_count = await db_manager.count_messages(chat_id)

    has_new_messages = as_utc(latest_message.get("timestamp")) > as_utc(scan_record.get("last_message_timestamp"))
    has_more_messages = message_count > scan_record.get("scanned_message_count", 0)

    return has_new_messages or has_more_messages, scan_record

# --- Extraction ---

def _normalize_extraction(raw: Dict[str, Any]) -> Dict[str, Dict]:
    """Coerces the model's JSON into {preferences: {k: str}, facts: {category: {k: str}}}."""
    preferences: Dict[str, str] = {}
    raw_preferences = raw.get("preferences")
    if isinstance(raw_preferences, dict):
        for key, value in raw_preferences.items():
            if value is None or not str(key).strip():
                continue
            preferences[str(key)] = stringify_value(value)

    facts: Dict[str, Dict[str, str]] = {}
    raw_facts = raw.get("facts")
    if isinstance(raw_facts, dict):
        for category, entries in raw_facts.items():
            if isinstance(entries, dict):
                for key, value in entries.items():
                    if value is None or not str(key).strip():
                        continue
                    facts.setdefault(str(category), {})[str(key)] = stringify_value(value)
            elif entries is not None:
                # A bare "key": "value" fact with no category
                facts.setdefault("", {})[str(category)] = stringify_value(entries)

    return {"preferences": preferences, "facts": facts}

async def extract_preferences_and_facts(llm_client, messages: List[Dict[str, Any]]) -> Dict[str, Dict]:
    if not messages:
        logger.info("No messages to process for context extraction.")
        return empty_extraction()

    user_text = "\n\n".join(
        msg.get("content", "") for msg in messages
        if msg.get("role") == "user" and msg.get("content")
    )
    if not user_text:
        logger.info("No user messages found in batch, skipping extraction.")
        return empty_extraction()

    logger.info(f"Extracting context from {len(messages)} messages ({len(user_text)} user characters).")

    try:
        response = await run_chat_completion(
            llm_client,
            messages=[
                {"role": "system", "content": context_extraction_system_prompt},
                {"role": "user", "content": user_text},
            ],
            model=CONTEXT_EXTRACTION_MODEL,
            temperature=0,
        )
        content = response.content or ""
    except Exception as e:
        logger.error(f"Error extracting context from conversation: {e}", exc_info=True)
        return empty_extraction()

    logger.debug(f"Raw extraction response:\n---RESPONSE START---\n{content}\n---RESPONSE END---")

    parsed = extract_first_json_object(content)
    if parsed is None:
        logger.warning("No JSON object found in extraction response.")
        return empty_extraction()

    extraction = _normalize_extraction(parsed)
    logger.info(f"Extracted {len(extraction['preferences'])} preferences and "
                f"{sum(len(v) for v in extraction['facts'].values())} facts.")
    return extraction

# --- Persistence ---

def flatten_facts(facts: Dict[str, Dict[str, str]]) -> Dict[str, str]:
    """{category: {key: value}} -> {"category_key": value}, or {"key": value} without a category."""
    flat = {}
    for category, entries in facts.items():
        for key, value in entries.items():
            flat[f"{category}_{key}" if category else key] = value
    return flat

async def save_preferences(db_manager, user_id: str, preferences: Dict[str, str]) -> int:
    if not preferences:
        return 0
    try:
        return await db_manager.set_user_preferences(user_id, preferences)
    except Exception as e:
        logger.error(f"Error saving preferences for user {user_id}: {e}", exc_info=True)
        return 0

async def save_facts(db_manager, user_id: str, facts: Dict[str, Dict[str, str]]) -> int:
    flat_facts = flatten_facts(facts)
    if not flat_facts:
        return 0
    try:
        return await db_manager.set_user_facts(user_id, flat_facts)
    except Exception as e:
        logger.error(f"Error saving facts for user {user_id}: {e}", exc_info=True)
        return 0

async def update_scan_record(db_manager, scan_record: Dict[str, Any], messages: List[Dict[str, Any]]) -> None:
    if not messages:
        return
    await db_manager.upsert_scan_record(
        chat_id=scan_record["chat_id"],
        user_id=scan_record["user_id"],
        last_message_timestamp=as_utc(messages[-1].get("timestamp")),
        processed_count=len(messages),
    )

# --- Driver ---

async def scan_chat(db_manager, llm_client, chat_id: str, user_id: str, scan_record: Dict[str, Any]) -> Dict[str, int]:
    last_scanned = as_utc(scan_record.get("last_message_timestamp"))
    messages = await db_manager.get_messages_after(chat_id, last_scanned, BATCH_SIZE)

    if not messages:
        return {"processedMessages": 0, "newPreferences": 0, "newFacts": 0}

    extraction = await extract_preferences_and_facts(llm_client, messages)
    new_preferences = await save_preferences(db_manager, user_id, extraction["preferences"])
    new_facts = await save_facts(db_manager, user_id, extraction["facts"])

    await update_scan_record(db_manager, scan_record, messages)

    return {"processedMessages": len(messages), "newPreferences": new_preferences, "newFacts": new_facts}

async def scan_user_chats(db_manager, llm_client, user_id: str, force_scan: bool = False) -> Dict[str, int]:
    """
    Scans every chat of a user, one at a time. Every eligible chat that scans without
    raising counts in scannedChats, even when its batch turned out empty. A failure in
    one chat is logged and counted in failedChats; its scan record is left as it was
    and the rest still run.
    """
    summary = {"scannedChats": 0, "newPreferences": 0, "newFacts": 0, "failedChats": 0}

    chats = await db_manager.get_chats_for_user(user_id)
    if not chats:
        logger.info(f"No chats to scan for user {user_id}.")
        return summary

    for chat in chats:
        chat_id = chat["chat_id"]
        try:
            needs_scan, scan_record = await check_if_chat_needs_scan(db_manager, chat_id, user_id, force_scan)
            if not needs_scan:
                continue
            result = await scan_chat(db_manager, llm_client, chat_id, user_id, scan_record)
        except Exception as e:
            logger.error(f"Scan of chat {chat_id} failed for user {user_id}: {e}", exc_info=True)
            summary["failedChats"] += 1
            continue

        summary["scannedChats"] += 1
        summary["newPreferences"] += result["newPreferences"]
        summary["newFacts"] += result["newFacts"]

    logger.info(f"Context scan finished for user {user_id}: {summary}")
    return summary
