import asyncio
import logging
from typing import Any, Dict, List, Optional

from openai import OpenAI

from main.config import OPENAI_API_KEY, OPENAI_API_BASE_URL, OPENAI_MODEL_NAME

logger = logging.getLogger(__name__)

class LLMProviderDownError(Exception):
    """Custom exception for when the LLM provider cannot be reached."""
    pass

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant. Use the user's context and the tools available to you to give personalized, accurate answers."

def get_llm_client() -> OpenAI:
    """Builds an OpenAI client for the configured OpenAI-compatible endpoint."""
    if not OPENAI_API_KEY:
        raise ValueError("No OpenAI API key configured.")
    return OpenAI(base_url=OPENAI_API_BASE_URL, api_key=OPENAI_API_KEY)

async def run_chat_completion(
    client: OpenAI,
    messages: List[Dict[str, Any]],
    model: str = OPENAI_MODEL_NAME,
    temperature: Optional[float] = None,
    tools: Optional[List[Dict[str, Any]]] = None,
):
    """
    Runs a single chat completion off the event loop and returns the first choice's message.
    Any provider failure is re-raised as LLMProviderDownError.
    """
    kwargs: Dict[str, Any] = {"model": model, "messages": messages}
    if temperature is not None:
        kwargs["temperature"] = temperature
    if tools:
        kwargs["tools"] = tools

    def sync_api_call():
        return client.chat.completions.create(**kwargs)

    try:
        logger.info(f"Running chat completion with model: {model}")
        completion = await asyncio.to_thread(sync_api_call)
        return completion.choices[0].message
    except Exception as e:
        error_message = f"Chat completion failed: {e}"
        logger.error(error_message, exc_info=True)
        raise LLMProviderDownError(error_message) from e
