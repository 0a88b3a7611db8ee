import asyncio
import logging
from typing import Any, Dict

from main.db import MongoManager
from main.llm import get_llm_client
from main.user_context.extraction import scan_user_chats
from workers.celery_app import celery_app

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# Helper to run async code in Celery's sync context
def run_async(coro):
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    return loop.run_until_complete(coro)

async def async_scan_user_context(user_id: str, force_scan: bool) -> Dict[str, Any]:
    db_manager = MongoManager()
    try:
        llm_client = get_llm_client()
        return await scan_user_chats(db_manager, llm_client, user_id, force_scan=force_scan)
    finally:
        await db_manager.close()

@celery_app.task(name="scan_user_context")
def scan_user_context_task(user_id: str, force_scan: bool = False) -> Dict[str, Any]:
    """
    Celery task wrapper for a full context scan of one user's chats.
    The returned summary is stored in the result backend.
    """
    logger.info(f"Celery worker received scan_user_context for user_id: {user_id} (force={force_scan})")
    try:
        return run_async(async_scan_user_context(user_id, force_scan))
    except Exception as e:
        logger.error(f"Context scan for user {user_id} failed: {e}", exc_info=True)
        raise
