import logging
from fastapi import APIRouter, Depends, HTTPException, status

from .models import CreateAgentRequest, UpdateAgentRequest
from ..config import INTEGRATIONS_CONFIG
from ..dependencies import mongo_manager
from ..auth.utils import PermissionChecker

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/agents",
    tags=["Agents"]
)

REQUIRED_AGENT_FIELDS = ("name", "description", "context", "instructions")

def _validate_apps(apps):
    unknown = [app for app in apps if app not in INTEGRATIONS_CONFIG]
    if unknown:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown apps: {', '.join(unknown)}")

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_agent(
    request: CreateAgentRequest,
    user_id: str = Depends(PermissionChecker(required_permissions=["write:agents"]))
):
    missing = [field for field in REQUIRED_AGENT_FIELDS if not (getattr(request, field) or "").strip()]
    if missing:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Missing required fields: {', '.join(missing)}")
    _validate_apps(request.connectedApps)

    agent = await mongo_manager.create_agent(user_id, {
        "name": request.name.strip(),
        "description": request.description.strip(),
        "context": request.context.strip(),
        "instructions": request.instructions.strip(),
        "connected_apps": request.connectedApps,
    })
    logger.info(f"Created agent {agent['agent_id']} for user {user_id}")
    return {"agent": agent}

@router.get("", status_code=status.HTTP_200_OK)
async def list_agents(
    user_id: str = Depends(PermissionChecker(required_permissions=["read:agents"]))
):
    return {"agents": await mongo_manager.get_agents_for_user(user_id)}

@router.get("/{agent_id}", status_code=status.HTTP_200_OK)
async def get_agent(
    agent_id: str,
    user_id: str = Depends(PermissionChecker(required_permissions=["read:agents"]))
):
    """Fetches a single agent owned by the user."""
    agent = await mongo_manager.get_agent(agent_id, user_id)
    if not agent:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Agent not found")
    return {"agent": agent}

@router.put("/{agent_id}", status_code=status.HTTP_200_OK)
async def update_agent(
    agent_id: str,
    request: UpdateAgentRequest,
    user_id: str = Depends(PermissionChecker(required_permissions=["write:agents"]))
):
    updates = request.model_dump(exclude_unset=True, exclude_none=True)
    if "connectedApps" in updates:
        _validate_apps(updates["connectedApps"])
        updates["connected_apps"] = updates.pop("connectedApps")
    if not updates:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update.")

    agent = await mongo_manager.update_agent(agent_id, user_id, updates)
    if not agent:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Agent not found")
    return {"agent": agent}

@router.delete("/{agent_id}", status_code=status.HTTP_200_OK)
async def delete_agent(
    agent_id: str,
    user_id: str = Depends(PermissionChecker(required_permissions=["write:agents"]))
):
    deleted = await mongo_manager.delete_agent(agent_id, user_id)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Agent not found")
    return {"message": "Agent deleted successfully"}
