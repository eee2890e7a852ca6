import os
from dotenv import load_dotenv

load_dotenv()

# Where the tracker API lives and how long any single call may take
TRACKER_API_URL = os.getenv("TRACKER_API_URL", "http://localhost:8000")
TRACKER_HTTP_TIMEOUT = float(os.getenv("TRACKER_HTTP_TIMEOUT", "10"))

# Optional JSON file used to persist the session between runs
TRACKER_SESSION_FILE = os.getenv("TRACKER_SESSION_FILE", "")
