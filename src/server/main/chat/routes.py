import logging
from fastapi import APIRouter, Depends, HTTPException, status, Query

from main.chat.models import ChatMessageInput
from main.chat.utils import ShortTermMemory, build_system_prompt, format_conversation, run_agent
from main.auth.utils import PermissionChecker
from main.dependencies import mongo_manager
from main.integrations.utils import get_composio_client
from main.llm import get_llm_client, LLMProviderDownError
from main.user_context.utils import get_formatted_user_context

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/chat",
    tags=["Chat"]
)

chats_router = APIRouter(
    prefix="/chats",
    tags=["Chat"]
)

def llm_client():
    try:
        return get_llm_client()
    except ValueError as e:
        logger.error(f"LLM client unavailable: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="The language model is not configured.")

def _chat_title(content: str) -> str:
    return content[:30] + "..."

@router.post("/message", summary="Send a message and get the assistant's reply")
async def chat_endpoint(
    request_body: ChatMessageInput,
    user_id: str = Depends(PermissionChecker(required_permissions=["read:chat", "write:chat"])),
    client=Depends(llm_client),
):
    content = request_body.content.strip()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message content is required.")

    agent = None
    if request_body.agentId:
        agent = await mongo_manager.get_agent(request_body.agentId, user_id)
        if not agent:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Agent not found")

    chat_id = request_body.chatId
    if chat_id:
        chat = await mongo_manager.get_chat(chat_id, user_id)
        if not chat:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")
    else:
        chat = await mongo_manager.create_chat(user_id, _chat_title(content), agent_id=request_body.agentId)
        chat_id = chat["chat_id"]

    memory = ShortTermMemory(mongo_manager, chat_id, agent_id=request_body.agentId)
    conversation = await memory.get_context_string()
    user_message = await memory.add_message("user", content)

    user_context = await get_formatted_user_context(mongo_manager, user_id)
    system_prompt = build_system_prompt(agent, user_context, conversation)

    if agent is not None:
        connected_apps = agent.get("connected_apps") or []
    else:
        connected_apps = await mongo_manager.get_connected_apps(user_id)

    composio = None
    if connected_apps:
        try:
            composio = get_composio_client()
        except ValueError as e:
            logger.warning(f"Running without tools for user {user_id}: {e}")

    try:
        reply = await run_agent(client, user_id, system_prompt, content, composio=composio, connected_apps=connected_apps)
    except LLMProviderDownError as e:
        logger.error(f"LLM provider down while answering user {user_id}: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="The language model is currently unavailable.")
    except Exception as e:
        logger.error(f"Error processing message for user {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error processing message")

    assistant_message = await memory.add_message("assistant", reply)

    return {
        "userMessage": user_message,
        "assistantMessage": assistant_message,
        "chatId": chat_id,
    }

@router.get("/short-term-memory", summary="Get the recent messages of a chat")
async def get_short_term_memory(
    chatId: str = Query(..., description="The chat to read"),
    user_id: str = Depends(PermissionChecker(required_permissions=["read:chat"]))
):
    chat = await mongo_manager.get_chat(chatId, user_id)
    if not chat:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")

    memory = ShortTermMemory(mongo_manager, chatId, agent_id=chat.get("agent_id"))
    recent_messages = await memory.get_recent_messages()
    return {
        "chatId": chatId,
        "agentId": chat.get("agent_id"),
        "recentMessages": recent_messages,
        "contextString": format_conversation(recent_messages),
        "messageCount": len(recent_messages),
    }

@chats_router.get("", summary="List the user's chats")
async def list_chats(
    user_id: str = Depends(PermissionChecker(required_permissions=["read:chat"]))
):
    return await mongo_manager.get_chats_for_user(user_id)

@chats_router.get("/by-agent/{agent_id}", summary="List the user's chats with one agent")
async def list_chats_by_agent(
    agent_id: str,
    user_id: str = Depends(PermissionChecker(required_permissions=["read:chat"]))
):
    return await mongo_manager.get_chats_for_user(user_id, agent_id=agent_id)

@chats_router.get("/{chat_id}", summary="Get a chat with its messages")
async def get_chat(
    chat_id: str,
    user_id: str = Depends(PermissionChecker(required_permissions=["read:chat"]))
):
    chat = await mongo_manager.get_chat(chat_id, user_id)
    if not chat:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")
    messages = await mongo_manager.get_chat_messages(chat_id)
    return {"chat": chat, "messages": messages}

@chats_router.delete("/{chat_id}", summary="Delete a chat and its messages")
async def delete_chat(
    chat_id: str,
    user_id: str = Depends(PermissionChecker(required_permissions=["write:chat"]))
):
    deleted = await mongo_manager.delete_chat(chat_id, user_id)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")
    return {"message": "Chat deleted successfully"}
