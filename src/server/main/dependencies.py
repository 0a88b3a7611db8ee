# src/server/main/dependencies.py
from main.db import MongoManager
from main.auth.utils import AuthHelper

# --- Global Instances ---
# Created once here and imported by the routers so the whole app shares them.
mongo_manager = MongoManager()
auth_helper = AuthHelper()
