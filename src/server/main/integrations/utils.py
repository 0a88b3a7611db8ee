import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from composio import Composio

from main.config import COMPOSIO_API_KEY, INTEGRATIONS_CONFIG

logger = logging.getLogger(__name__)

def get_composio_client() -> Composio:
    if not COMPOSIO_API_KEY:
        raise ValueError("COMPOSIO_API_KEY is not configured.")
    return Composio(api_key=COMPOSIO_API_KEY)

def resolve_action_name(tool_schema: Optional[Dict[str, Any]], function_name: str) -> str:
    """
    Maps an OpenAI function name back to the Composio action it came from.
    Prefers the action name carried in the schema's metadata.
    """
    metadata = (tool_schema or {}).get("metadata") or {}
    action_name = metadata.get("actionName") or metadata.get("action_name") or function_name
    return str(action_name).upper()

def index_tool_schemas(tool_schemas: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    index = {}
    for schema in tool_schemas:
        function_name = (schema.get("function") or {}).get("name")
        if function_name:
            index[function_name] = schema
    return index

async def find_tools_by_use_case(composio: Composio, user_id: str, toolkits: List[str], use_case: str) -> List[Dict[str, Any]]:
    """Semantic lookup of the actions relevant to a request. Empty when nothing matches or the search fails."""
    try:
        tools = await asyncio.to_thread(composio.tools.get, user_id=user_id, toolkits=toolkits, search=use_case)
    except Exception as e:
        logger.warning(f"Composio tool search failed for {toolkits}: {e}")
        return []
    return list(tools or [])

async def get_tools_for_apps(composio: Composio, user_id: str, apps: List[str], use_case: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Fetches OpenAI-format tool schemas for the given toolkits. Unknown apps are ignored.
    With a use case, only the matching actions are returned, falling back to every
    action of the toolkits when the search finds nothing.
    """
    toolkits = [app for app in apps if app in INTEGRATIONS_CONFIG]
    if not toolkits:
        return []
    if use_case:
        matched = await find_tools_by_use_case(composio, user_id, toolkits, use_case)
        if matched:
            logger.info(f"Tool search matched {len(matched)} actions for user {user_id} in {toolkits}")
            return matched
    try:
        tools = await asyncio.to_thread(composio.tools.get, user_id=user_id, toolkits=toolkits)
    except Exception as e:
        logger.error(f"Error loading Composio tools for {toolkits}: {e}", exc_info=True)
        return []
    logger.info(f"Loaded {len(tools or [])} Composio tools for user {user_id} from {toolkits}")
    return list(tools or [])

async def execute_composio_tool(composio: Composio, user_id: str, action_name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    """Executes one action. Failures are returned as {"success": False, "error": ...}, never raised."""
    try:
        result = await asyncio.to_thread(
            composio.tools.execute,
            action_name,
            arguments=arguments,
            user_id=user_id,
            dangerously_skip_version_check=True,
        )
    except Exception as e:
        logger.error(f"Error executing Composio tool {action_name}: {e}", exc_info=True)
        return {"success": False, "error": str(e)}

    if hasattr(result, "model_dump"):
        result = result.model_dump()
    if isinstance(result, dict):
        if result.get("successful") is False:
            return {"success": False, "error": result.get("error") or "Tool execution failed."}
        return {"success": True, "data": result.get("data", result)}
    return {"success": True, "data": result}

def serialize_tool_result(result: Dict[str, Any]) -> str:
    return json.dumps(result, ensure_ascii=False, default=str)
