import logging
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

NO_CONTEXT_TEXT = "No specific user context available."
GENERAL_CATEGORY = "general"

async def get_user_context(db_manager, user_id: str) -> Tuple[Dict[str, str], Dict[str, str]]:
    """Returns the user's (preferences, facts) maps, empty when nothing was stored yet."""
    preferences_doc = await db_manager.get_user_preferences(user_id)
    facts_doc = await db_manager.get_user_facts(user_id)
    preferences = (preferences_doc or {}).get("preferences") or {}
    facts = (facts_doc or {}).get("facts") or {}
    return preferences, facts

async def get_user_context_documents(db_manager, user_id: str) -> Tuple[Optional[Dict], Optional[Dict]]:
    return await db_manager.get_user_preferences(user_id), await db_manager.get_user_facts(user_id)

def _group_by_category(entries: Dict[str, Any]) -> "OrderedDict[str, List[str]]":
    """
    'food_favorite_cuisine' -> category 'food', line '- favorite cuisine: <value>'.
    Keys without an underscore go under the general category.
    """
    grouped: "OrderedDict[str, List[str]]" = OrderedDict()
    for key, value in entries.items():
        parts = key.split("_")
        if len(parts) > 1 and parts[0]:
            category = parts[0]
            display_key = " ".join(parts[1:])
        else:
            category = GENERAL_CATEGORY
            display_key = key.replace("_", " ")
        grouped.setdefault(category, []).append(f"- {display_key}: {value}")
    return grouped

def _format_section(title: str, entries: Dict[str, Any]) -> str:
    section = f"## {title}\n"
    for category, lines in _group_by_category(entries).items():
        section += f"### {category[:1].upper()}{category[1:]}\n"
        section += "\n".join(lines) + "\n\n"
    return section

def format_user_context_for_prompt(preferences: Dict[str, Any], facts: Dict[str, Any]) -> str:
    formatted = ""
    if preferences:
        formatted += _format_section("User Preferences", preferences)
    if facts:
        formatted += _format_section("User Facts", facts)
    return formatted.strip() or NO_CONTEXT_TEXT

async def get_formatted_user_context(db_manager, user_id: str) -> str:
    try:
        preferences, facts = await get_user_context(db_manager, user_id)
    except Exception as e:
        logger.error(f"Error loading user context for {user_id}: {e}", exc_info=True)
        return NO_CONTEXT_TEXT
    return format_user_context_for_prompt(preferences, facts)
