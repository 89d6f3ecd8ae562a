"""Configuration and settings."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Paths
PROJECT_ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(PROJECT_ROOT / "data")))
OUTPUT_DIR = Path(os.getenv("OUTPUT_DIR", str(PROJECT_ROOT / "output")))

# Ensure directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)
OUTPUT_DIR.mkdir(parents=True, exist_ok=True)

# Database
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR / 'quotations.db'}")

# LLM (offer extraction)
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
AGENTS_CONFIG_PATH = PROJECT_ROOT / "config" / "agents.yaml"
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "45"))

# Logging
LOG_DIR = OUTPUT_DIR / "logs"
LOG_FILE = LOG_DIR / "app.jsonl"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
VERBOSE_LOGGING = os.getenv("VERBOSE_LOGGING", "false").lower() == "true"

# Ensure log directory exists
LOG_DIR.mkdir(parents=True, exist_ok=True)

# Phoenix / OpenTelemetry
PHOENIX_ENABLED = os.getenv("PHOENIX_ENABLED", "false").lower() == "true"
PHOENIX_COLLECTOR_ENDPOINT = os.getenv(
    "PHOENIX_COLLECTOR_ENDPOINT",
    "http://localhost:6006/v1/traces",
)
PHOENIX_PROJECT_NAME = os.getenv("PHOENIX_PROJECT_NAME", "quote-reconciler")
PHOENIX_API_KEY = os.getenv("PHOENIX_API_KEY", "")
DEPLOYMENT_ENVIRONMENT = os.getenv("DEPLOYMENT_ENVIRONMENT", "development")

# Reconciliation bounds.
# Only the most recent CANDIDATE_LIMIT open quotations are matchable by a reply.
CANDIDATE_LIMIT = int(os.getenv("CANDIDATE_LIMIT", "50"))
HISTORY_PAGE_SIZE = int(os.getenv("HISTORY_PAGE_SIZE", "100"))
HISTORY_MAX_PAGES = int(os.getenv("HISTORY_MAX_PAGES", "10"))
MAX_MESSAGE_ATTEMPTS = int(os.getenv("MAX_MESSAGE_ATTEMPTS", "3"))
MIN_BODY_CHARS = int(os.getenv("MIN_BODY_CHARS", "10"))

# Gmail (mail provider)
GMAIL_USER_ID = os.getenv("GMAIL_USER_ID", "me")
GMAIL_MAILBOX = os.getenv("GMAIL_MAILBOX", "").strip().lower()
GMAIL_PUBSUB_TOPIC = os.getenv("GMAIL_PUBSUB_TOPIC", "")
GMAIL_LABEL_IDS = [
    label.strip() for label in os.getenv("GMAIL_LABEL_IDS", "INBOX").split(",") if label.strip()
]
GMAIL_API_TIMEOUT_SECONDS = float(os.getenv("GMAIL_API_TIMEOUT_SECONDS", "30"))
# Signature and display name on outgoing quotation requests.
MAIL_SENDER_NAME = os.getenv("MAIL_SENDER_NAME", "Equipe Padoca")

# Google OAuth (token refresh for the Gmail API)
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
TOKEN_CACHE_PATH = Path(
    os.getenv("TOKEN_CACHE_PATH", str(Path.home() / ".quote-reconciler" / "token_cache.json"))
)

# Webhook (Pub/Sub push)
WEBHOOK_PORT = int(os.getenv("WEBHOOK_PORT", "8000"))
PUSH_VERIFICATION_TOKEN = os.getenv("PUSH_VERIFICATION_TOKEN", "")

# Watch renewal. Gmail watches expire after 7 days; renew every 6.
WATCH_AUTO_RENEW = os.getenv("WATCH_AUTO_RENEW", "true").lower() == "true"
WATCH_RENEW_INTERVAL_HOURS = float(os.getenv("WATCH_RENEW_INTERVAL_HOURS", "144"))
WATCH_RENEW_MARGIN_HOURS = float(os.getenv("WATCH_RENEW_MARGIN_HOURS", "24"))
WATCH_CHECK_INTERVAL_SECONDS = int(os.getenv("WATCH_CHECK_INTERVAL_SECONDS", "3600"))
