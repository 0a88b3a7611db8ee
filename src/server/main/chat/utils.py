import json
import logging
from typing import Any, Dict, List, Optional

from main.chat.prompts import AGENT_SYSTEM_PROMPT_TEMPLATE, AGENT_SECTION_TEMPLATE
from main.config import AGENT_TEMPERATURE, MAX_TOOL_ITERATIONS, SHORT_TERM_MEMORY_LIMIT
from main.integrations.utils import (
    execute_composio_tool, get_tools_for_apps, index_tool_schemas,
    resolve_action_name, serialize_tool_result,
)
from main.llm import DEFAULT_SYSTEM_PROMPT, run_chat_completion
from workers.utils.text_utils import extract_first_json_object

logger = logging.getLogger(__name__)

NO_CONVERSATION_TEXT = "No previous conversation."

def format_conversation(messages: List[Dict[str, Any]]) -> str:
    if not messages:
        return NO_CONVERSATION_TEXT
    return "\n".join(
        f"{'User' if msg.get('role') == 'user' else 'Assistant'}: {msg.get('content', '')}"
        for msg in messages
    )

class ShortTermMemory:
    """The last few messages of one chat, used as conversational context."""

    def __init__(self, db_manager, chat_id: str, agent_id: Optional[str] = None, message_limit: int = SHORT_TERM_MEMORY_LIMIT):
        self.db_manager = db_manager
        self.chat_id = chat_id
        self.agent_id = agent_id
        self.message_limit = message_limit

    async def add_message(self, role: str, content: str) -> Dict[str, Any]:
        return await self.db_manager.add_message(self.chat_id, role, content, agent_id=self.agent_id)

    async def get_recent_messages(self) -> List[Dict[str, Any]]:
        return await self.db_manager.get_recent_messages(self.chat_id, self.message_limit)

    async def get_context_string(self) -> str:
        return format_conversation(await self.get_recent_messages())

def build_system_prompt(agent: Optional[Dict[str, Any]], user_context: str, conversation: str) -> str:
    if agent:
        agent_section = AGENT_SECTION_TEMPLATE.format(
            name=agent.get("name", "an assistant"),
            description=agent.get("description", ""),
            context=agent.get("context", ""),
            instructions=agent.get("instructions", ""),
        )
    else:
        agent_section = DEFAULT_SYSTEM_PROMPT
    return AGENT_SYSTEM_PROMPT_TEMPLATE.format(
        agent_section=agent_section,
        user_context=user_context,
        conversation=conversation,
    ).strip()

def _parse_tool_arguments(raw_arguments: Optional[str]) -> Dict[str, Any]:
    if not raw_arguments:
        return {}
    try:
        parsed = json.loads(raw_arguments)
    except json.JSONDecodeError:
        parsed = extract_first_json_object(raw_arguments)
    return parsed if isinstance(parsed, dict) else {}

def _assistant_tool_call_message(response) -> Dict[str, Any]:
    return {
        "role": "assistant",
        "content": response.content,
        "tool_calls": [
            {
                "id": tool_call.id,
                "type": "function",
                "function": {"name": tool_call.function.name, "arguments": tool_call.function.arguments},
            }
            for tool_call in response.tool_calls
        ],
    }

async def run_agent(
    llm_client,
    user_id: str,
    system_prompt: str,
    user_content: str,
    composio=None,
    connected_apps: Optional[List[str]] = None,
) -> str:
    """
    Runs the assistant with OpenAI function calling over the Composio tools of the
    connected apps. Each round executes every tool call the model asked for and feeds
    the results back. After MAX_TOOL_ITERATIONS rounds a final answer is requested
    without tools.
    """
    tools: List[Dict[str, Any]] = []
    if composio is not None and connected_apps:
        tools = await get_tools_for_apps(composio, user_id, connected_apps, use_case=user_content)
    tool_index = index_tool_schemas(tools)

    messages: List[Dict[str, Any]] = [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_content},
    ]

    for iteration in range(MAX_TOOL_ITERATIONS):
        response = await run_chat_completion(llm_client, messages, temperature=AGENT_TEMPERATURE, tools=tools or None)
        if not getattr(response, "tool_calls", None):
            return response.content or ""

        logger.info(f"Agent round {iteration + 1}: {len(response.tool_calls)} tool call(s) for user {user_id}")
        messages.append(_assistant_tool_call_message(response))

        for tool_call in response.tool_calls:
            function_name = tool_call.function.name
            action_name = resolve_action_name(tool_index.get(function_name), function_name)
            arguments = _parse_tool_arguments(tool_call.function.arguments)
            result = await execute_composio_tool(composio, user_id, action_name, arguments)
            messages.append({
                "role": "tool",
                "tool_call_id": tool_call.id,
                "content": serialize_tool_result(result),
            })

    logger.warning(f"Agent hit the tool iteration limit ({MAX_TOOL_ITERATIONS}) for user {user_id}")
    response = await run_chat_completion(llm_client, messages, temperature=AGENT_TEMPERATURE)
    return response.content or ""
