import os
import uuid
import logging
from datetime import datetime, timezone
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Configure logging
logger = logging.getLogger(__name__)

# Database configuration
DATABASE_NAME = os.getenv("MONGODB_DATABASE", "TaskTracker")
_DEFAULT_MONGODB_URI = "mongodb://localhost:27017/?replicaSet=rs0"


def _resolve_mongo_uri() -> str:
    """Resolve the MongoDB connection string with sane fallbacks."""
    candidates = [
        os.getenv("MONGODB_URI"),
        os.getenv("MONGODB_CONNECTION_STRING"),
    ]

    for candidate in candidates:
        if candidate and candidate.strip():
            return candidate.strip()

    if any(candidate == "" for candidate in candidates):
        logger.warning("MONGODB connection string env var was empty; falling back to default URI.")

    return _DEFAULT_MONGODB_URI


MONGODB_CONNECTION_STRING = _resolve_mongo_uri()

# Connection pool / timeout tuning (milliseconds)
MONGODB_SERVER_SELECTION_TIMEOUT_MS = int(os.getenv("MONGODB_SERVER_SELECTION_TIMEOUT_MS", "5000"))
MONGODB_SOCKET_TIMEOUT_MS = int(os.getenv("MONGODB_SOCKET_TIMEOUT_MS", "20000"))

# Collections
USERS_COLLECTION = "users"
SESSIONS_COLLECTION = "sessions"
PROFILES_COLLECTION = "profiles"
USER_ROLES_COLLECTION = "user_roles"
PROJECTS_COLLECTION = "projects"
TASKS_COLLECTION = "tasks"


def new_id() -> str:
    """Generate a document id (UUID4 string)."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Current UTC time at the millisecond precision MongoDB stores."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def document_to_record(doc):
    """Convert a stored document into an API-shaped record ("_id" -> "id")."""
    if doc is None:
        return None
    record = {k: v for k, v in doc.items() if k != "_id"}
    record["id"] = doc.get("_id")
    return record
