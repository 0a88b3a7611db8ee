import logging
from typing import List, Optional

from celery.result import AsyncResult
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from main.dependencies import mongo_manager
from main.auth.utils import PermissionChecker
from main.db import sanitize_map_key
from workers.celery_app import celery_app
from workers.tasks import scan_user_context_task
from .extraction import stringify_value
from .models import ScanRequest, UpdateContextRequest
from .utils import get_user_context_documents

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/user/context",
    tags=["User Context"]
)

def _split_keys(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [key.strip() for key in raw.split(",") if key.strip()]

def _isoformat(value) -> Optional[str]:
    return value.isoformat() if value else None

@router.get("", summary="Get the stored preferences and facts for a user")
async def get_context(
    user_id: str = Depends(PermissionChecker(required_permissions=["read:memory"]))
):
    try:
        preferences_doc, facts_doc = await get_user_context_documents(mongo_manager, user_id)
    except Exception as e:
        logger.error(f"Error fetching user context for {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error fetching user context.")

    preferences_doc = preferences_doc or {}
    facts_doc = facts_doc or {}
    return JSONResponse(content={
        "preferences": preferences_doc.get("preferences") or {},
        "facts": facts_doc.get("facts") or {},
        "lastUpdated": {
            "preferences": _isoformat(preferences_doc.get("last_updated")),
            "facts": _isoformat(facts_doc.get("last_updated")),
        },
    })

@router.post("", summary="Queue a scan of the user's chats", status_code=status.HTTP_202_ACCEPTED)
async def trigger_scan(
    request: ScanRequest,
    user_id: str = Depends(PermissionChecker(required_permissions=["write:memory"]))
):
    try:
        task = scan_user_context_task.delay(user_id, request.forceScan)
        await mongo_manager.record_scan_task(task.id, user_id, request.forceScan)
    except Exception as e:
        logger.error(f"Could not queue context scan for user {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not start context scan.")

    logger.info(f"Queued context scan {task.id} for user {user_id} (force={request.forceScan})")
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content={"message": "Context scan started", "userId": user_id, "taskId": task.id},
    )

@router.get("/scan/{task_id}", summary="Get the status of a queued scan")
async def get_scan_status(
    task_id: str,
    user_id: str = Depends(PermissionChecker(required_permissions=["read:memory"]))
):
    if not await mongo_manager.get_scan_task(task_id, user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Scan task not found.")

    result = AsyncResult(task_id, app=celery_app)
    response = {"taskId": task_id, "status": result.state}
    if result.state == "SUCCESS":
        response["result"] = result.result
    elif result.state == "FAILURE":
        response["error"] = str(result.result)
    return JSONResponse(content=response)

@router.put("", summary="Manually set preference and fact keys")
async def update_context(
    request: UpdateContextRequest,
    user_id: str = Depends(PermissionChecker(required_permissions=["write:memory"]))
):
    preferences = {sanitize_map_key(k): stringify_value(v) for k, v in request.preferences.items() if str(k).strip()}
    facts = {sanitize_map_key(k): stringify_value(v) for k, v in request.facts.items() if str(k).strip()}
    if not preferences and not facts:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No preferences or facts provided.")

    try:
        updated_preferences = await mongo_manager.set_user_preferences(user_id, preferences)
        updated_facts = await mongo_manager.set_user_facts(user_id, facts)
    except Exception as e:
        logger.error(f"Error updating user context for {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error updating user context.")

    return JSONResponse(content={
        "message": "User context updated",
        "updates": {"preferences": updated_preferences, "facts": updated_facts},
    })

@router.delete("", summary="Delete preference and fact keys")
async def delete_context(
    preferences: Optional[str] = None,
    facts: Optional[str] = None,
    user_id: str = Depends(PermissionChecker(required_permissions=["write:memory"]))
):
    preference_keys = [sanitize_map_key(k) for k in _split_keys(preferences)]
    fact_keys = [sanitize_map_key(k) for k in _split_keys(facts)]
    if not preference_keys and not fact_keys:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No keys specified for deletion.")

    try:
        deleted_preferences = await mongo_manager.delete_user_preferences(user_id, preference_keys) if preference_keys else 0
        deleted_facts = await mongo_manager.delete_user_facts(user_id, fact_keys) if fact_keys else 0
    except Exception as e:
        logger.error(f"Error deleting user context for {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error deleting user context.")

    return JSONResponse(content={
        "message": "User context entries deleted",
        "deleted": {"preferences": deleted_preferences, "facts": deleted_facts},
    })

@router.get("/counts", summary="Count stored preferences and facts")
async def get_context_counts(
    user_id: str = Depends(PermissionChecker(required_permissions=["read:memory"]))
):
    preferences_doc, facts_doc = await get_user_context_documents(mongo_manager, user_id)
    return JSONResponse(content={
        "preferences": len((preferences_doc or {}).get("preferences") or {}),
        "facts": len((facts_doc or {}).get("facts") or {}),
    })
