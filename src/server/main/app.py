import time
import datetime
from datetime import timezone
START_TIME = time.time()
print(f"[{datetime.datetime.now()}] [STARTUP] Main Server application script execution started.")

import logging
logging.basicConfig(level=logging.INFO)

from contextlib import asynccontextmanager
from bson import ObjectId

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.encoders import ENCODERS_BY_TYPE

from main.config import APP_SERVER_PORT, OPENAI_API_KEY, COMPOSIO_API_KEY
from main.dependencies import mongo_manager
from main.chat.routes import router as chat_router, chats_router
from main.agents.routes import router as agents_router
from main.integrations.routes import router as integrations_router
from main.user_context.routes import router as user_context_router

logger = logging.getLogger(__name__)

# Add a custom encoder for ObjectId to FastAPI's internal dictionary
ENCODERS_BY_TYPE[ObjectId] = str

@asynccontextmanager
async def lifespan(app_instance: FastAPI):
    print(f"[{datetime.datetime.now(timezone.utc).isoformat()}] [LIFESPAN] App startup...")
    await mongo_manager.initialize_db()
    if not OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY is not set. Chat and context extraction will be unavailable.")
    if not COMPOSIO_API_KEY:
        logger.warning("COMPOSIO_API_KEY is not set. Agents will run without tools.")
    print(f"[{datetime.datetime.now(timezone.utc).isoformat()}] [LIFESPAN] App startup complete.")
    yield
    print(f"[{datetime.datetime.now(timezone.utc).isoformat()}] [LIFESPAN] App shutdown sequence initiated...")
    await mongo_manager.close()
    print(f"[{datetime.datetime.now(timezone.utc).isoformat()}] [LIFESPAN] App shutdown complete.")

app = FastAPI(title="Agent Chat Server", version="1.0.0", docs_url="/docs", redoc_url="/redoc", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)

app.include_router(chat_router)
app.include_router(chats_router)
app.include_router(agents_router)
app.include_router(integrations_router)
app.include_router(user_context_router)

@app.get("/", tags=["General"])
async def root():
    return {"message": "Agent Chat Server Operational."}

@app.get("/health", tags=["General"])
async def health():
    return {
        "status": "healthy",
        "timestamp": datetime.datetime.now(timezone.utc).isoformat(),
        "services": {
            "database": "connected" if mongo_manager.client else "disconnected",
            "llm": "configured" if OPENAI_API_KEY else "not_configured",
            "tools": "configured" if COMPOSIO_API_KEY else "not_configured",
        }
    }

END_TIME = time.time()
print(f"[{datetime.datetime.now()}] [APP_PY_LOADED] Main Server app.py loaded in {END_TIME - START_TIME:.2f} seconds.")

if __name__ == "__main__":
    import uvicorn
    log_config = uvicorn.config.LOGGING_CONFIG.copy()
    log_config["formatters"]["access"]["fmt"] = '%(asctime)s %(levelname)s %(client_addr)s - "[MAIN_SERVER_ACCESS] %(request_line)s" %(status_code)s'
    log_config["formatters"]["default"]["fmt"] = '%(asctime)s %(levelname)s [%(name)s] [MAIN_SERVER_DEFAULT] %(message)s'
    uvicorn.run("main.app:app", host="127.0.0.1", port=APP_SERVER_PORT, lifespan="on", reload=False, workers=1, log_config=log_config)
