import os
import asyncio
import logging
from fastapi import APIRouter, Depends, HTTPException, status, Query
from fastapi.responses import JSONResponse

from main.integrations.models import ToolToggleRequest, ConnectRequest
from main.integrations.utils import get_composio_client
from main.dependencies import mongo_manager
from main.auth.utils import PermissionChecker
from main.config import INTEGRATIONS_CONFIG, APP_BASE_URL

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/integrations",
    tags=["Integrations Management"]
)

def composio_client():
    try:
        return get_composio_client()
    except ValueError as e:
        logger.error(f"Composio unavailable: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Tool integrations are not configured.")

@router.get("/tools", summary="Get the apps a user has connected")
async def get_connected_tools(
    user_id: str = Depends(PermissionChecker(required_permissions=["read:config"]))
):
    connected_apps = await mongo_manager.get_connected_apps(user_id)
    tools = []
    for name, config in INTEGRATIONS_CONFIG.items():
        tools.append({
            "name": name,
            "display_name": config["display_name"],
            "description": config["description"],
            "category": config["category"],
            "connected": name in connected_apps,
        })
    return JSONResponse(content={"connectedApps": connected_apps, "tools": tools})

@router.post("/tools", summary="Mark an app as connected or disconnected")
async def toggle_tool(
    request: ToolToggleRequest,
    user_id: str = Depends(PermissionChecker(required_permissions=["write:config"]))
):
    if request.tool not in INTEGRATIONS_CONFIG:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown tool: {request.tool}")

    await mongo_manager.set_app_connected(user_id, request.tool, request.connected)
    connected_apps = await mongo_manager.get_connected_apps(user_id)
    logger.info(f"User {user_id} set {request.tool} connected={request.connected}")
    return JSONResponse(content={"success": True, "connectedApps": connected_apps})

@router.post("/connect", summary="Initiate a Composio connection for an app")
async def initiate_connection(
    request: ConnectRequest,
    user_id: str = Depends(PermissionChecker(required_permissions=["write:config"])),
    composio=Depends(composio_client),
):
    service_name = request.service
    service_config = INTEGRATIONS_CONFIG.get(service_name)
    if not service_config or service_config.get("auth_type") != "composio":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid service for Composio connection.")

    auth_config_id = os.getenv(f"{service_name.upper()}_AUTH_CONFIG_ID")
    if not auth_config_id:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Auth Config ID for {service_name} is not configured on the server.")

    try:
        logger.info(f"Initiating Composio for {service_name} with auth_config_id={auth_config_id}")
        connection_request = await asyncio.to_thread(
            composio.connected_accounts.initiate,
            user_id=user_id,
            auth_config_id=auth_config_id,
            callback_url=f"{APP_BASE_URL}/integrations",
        )
    except Exception as e:
        logger.error(f"Error initiating Composio connection for {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return JSONResponse(content={
        "redirectUrl": connection_request.redirect_url,
        "connectionId": connection_request.id,
    })

@router.get("/connect/status", summary="Get the status of a Composio connection")
async def get_connection_status(
    connectionId: str = Query(..., description="The Composio connected account id"),
    user_id: str = Depends(PermissionChecker(required_permissions=["read:config"])),
    composio=Depends(composio_client),
):
    try:
        connected_account = await asyncio.to_thread(composio.connected_accounts.get, connectionId)
    except Exception as e:
        logger.error(f"Error fetching Composio connection {connectionId} for {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return JSONResponse(content={
        "connectionId": connectionId,
        "status": connected_account.status,
        "connected": connected_account.status == "ACTIVE",
    })
