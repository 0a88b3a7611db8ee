import os
from dotenv import load_dotenv
import logging

# --- Environment Loading Logic ---
ENVIRONMENT = os.getenv('ENVIRONMENT', 'dev-local')
logging.info(f"[Config] Initializing configuration for ENVIRONMENT='{ENVIRONMENT}'")

server_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))

if ENVIRONMENT == 'dev-local':
    # Prefer .env.local, fall back to .env
    dotenv_local_path = os.path.join(server_root, '.env.local')
    dotenv_path = os.path.join(server_root, '.env')
    load_path = dotenv_local_path if os.path.exists(dotenv_local_path) else dotenv_path
    if os.path.exists(load_path):
        load_dotenv(dotenv_path=load_path)
elif ENVIRONMENT == 'selfhost':
    dotenv_path = os.path.join(server_root, '.env.selfhost')
    load_dotenv(dotenv_path=dotenv_path)

# --- Server ---
APP_SERVER_PORT = int(os.getenv("APP_SERVER_PORT", 5000))
APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:3000")

# --- Auth ---
AUTH0_DOMAIN = os.getenv("AUTH0_DOMAIN")
AUTH0_AUDIENCE = os.getenv("AUTH0_AUDIENCE")
ALGORITHMS = ["RS256"]
AUTH0_SCOPE = os.getenv("AUTH0_SCOPE")
SELF_HOST_AUTH_SECRET = os.getenv("SELF_HOST_AUTH_SECRET")

# --- Database ---
MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "agentchat")

# --- Encryption ---
AES_SECRET_KEY_HEX = os.getenv("AES_SECRET_KEY")
AES_IV_HEX = os.getenv("AES_IV")
AES_SECRET_KEY = bytes.fromhex(AES_SECRET_KEY_HEX) if AES_SECRET_KEY_HEX and len(AES_SECRET_KEY_HEX) == 64 else None
AES_IV = bytes.fromhex(AES_IV_HEX) if AES_IV_HEX and len(AES_IV_HEX) == 32 else None
DB_ENCRYPTION_ENABLED = ENVIRONMENT == 'stag'

# --- LLM ---
OPENAI_API_BASE_URL = os.getenv("OPENAI_API_BASE_URL", "https://api.openai.com/v1/")
OPENAI_MODEL_NAME = os.getenv("OPENAI_MODEL_NAME", "gpt-3.5-turbo")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
AGENT_TEMPERATURE = float(os.getenv("AGENT_TEMPERATURE", 0.7))

# --- User Context Extraction ---
CONTEXT_EXTRACTION_MODEL = os.getenv("CONTEXT_EXTRACTION_MODEL", "gpt-3.5-turbo")
CONTEXT_SCAN_BATCH_SIZE = 20
SHORT_TERM_MEMORY_LIMIT = int(os.getenv("SHORT_TERM_MEMORY_LIMIT", 10))

# --- Composio ---
COMPOSIO_API_KEY = os.getenv("COMPOSIO_API_KEY")
MAX_TOOL_ITERATIONS = 5

# --- Integrations ---
# Apps an agent can be connected to. Keys are the Composio toolkit slugs.
INTEGRATIONS_CONFIG = {
    "gmail": {
        "display_name": "Gmail",
        "description": "Read, send, and manage emails. Powered by Composio.",
        "auth_type": "composio",
        "category": "Communication",
    },
    "github": {
        "display_name": "GitHub",
        "description": "Manage repositories, stars, and issues for the authenticated user. Powered by Composio.",
        "auth_type": "composio",
        "category": "Development",
    },
    "whatsapp": {
        "display_name": "WhatsApp",
        "description": "Send and read WhatsApp messages. Powered by Composio.",
        "auth_type": "composio",
        "category": "Communication",
    },
}
