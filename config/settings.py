import os
from dotenv import load_dotenv

# Load environment variables from the project root
load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), "..", ".env"))

DATABASE_URL = os.getenv("DATABASE_URL")

if not DATABASE_URL:
    pg_host = os.getenv("PGHOST")
    pg_port = os.getenv("PGPORT", "5432")
    pg_db = os.getenv("PGDATABASE")
    pg_user = os.getenv("PGUSER")
    pg_password = os.getenv("PGPASSWORD")

    if all([pg_host, pg_db, pg_user, pg_password]):
        DATABASE_URL = (
            f"postgresql+asyncpg://{pg_user}:{pg_password}@{pg_host}:{pg_port}/{pg_db}"
        )

if DATABASE_URL is None:
    raise ValueError(
        "DATABASE_URL is not configured. Set DATABASE_URL explicitly or provide "
        "PGHOST/PGPORT/PGDATABASE/PGUSER/PGPASSWORD environment variables."
    )


def _bool_env(name: str, default: str = "1") -> bool:
    value = os.getenv(name, default).strip().lower()
    return value not in {"0", "false", "no"}


def _list_env(name: str) -> list[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


API_AUTH_TOKEN = os.getenv("API_AUTH_TOKEN")
SQL_ECHO = _bool_env("SQL_ECHO", "false")

# Relay presentation
THREAD_TIMESTAMPS = _bool_env("THREAD_TIMESTAMPS", "false")
USE_NICKNAMES = _bool_env("USE_NICKNAMES", "false")
RELAY_SMALL_ATTACHMENTS_AS_ATTACHMENTS = _bool_env("RELAY_SMALL_ATTACHMENTS_AS_ATTACHMENTS", "false")
SMALL_ATTACHMENT_LIMIT = int(os.getenv("SMALL_ATTACHMENT_LIMIT", str(1024 * 1024 * 2)))
STAFF_ROLE_IDS = _list_env("STAFF_ROLE_IDS")
COMMAND_PREFIX = os.getenv("COMMAND_PREFIX", "!")

# Lifecycle timing (seconds)
CLOSE_GUARD_SECONDS = float(os.getenv("CLOSE_GUARD_SECONDS", "30"))
NOTICE_TTL_SECONDS = float(os.getenv("NOTICE_TTL_SECONDS", "30"))
SEND_TIMEOUT_SECONDS = float(os.getenv("SEND_TIMEOUT_SECONDS", "15"))
CLOSE_SWEEP_INTERVAL_SECONDS = float(os.getenv("CLOSE_SWEEP_INTERVAL_SECONDS", "2"))

# Log viewer / log channel
SELF_URL = os.getenv("SELF_URL", "http://localhost:8000").rstrip("/")
LOG_CHANNEL_ID = os.getenv("LOG_CHANNEL_ID")
