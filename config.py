import os

from dotenv import load_dotenv

# Load .env
load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

DEMO_MODE = os.getenv("DEMO_MODE", "false").lower() in ("1", "true", "yes")
SESSION_TTL_MINUTES = int(os.getenv("SESSION_TTL_MINUTES", "1440"))  # default 1 day
CODE_TTL_MINUTES = int(os.getenv("CODE_TTL_MINUTES", "10"))

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# How often an open chats socket re-checks the viewer's own requests for volunteers
RECONCILE_INTERVAL_SECONDS = float(os.getenv("RECONCILE_INTERVAL_SECONDS", "30"))

PORT = int(os.getenv("PORT", 8000))
