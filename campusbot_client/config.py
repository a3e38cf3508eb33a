"""
config.py — Runtime Settings for the CampusBot Client

All settings come from environment variables with defaults suitable for a
local development setup (mock services on port 3000).
"""

import os

API_BASE_URL = os.environ.get("CAMPUSBOT_API_URL", "http://localhost:3000/api")
STORAGE_PATH = os.path.expanduser(
    os.environ.get("CAMPUSBOT_STORAGE_PATH", "~/.campusbot/storage.json")
)

# Seconds between tracking polls while an order is not terminal
POLL_INTERVAL_SECONDS = float(os.environ.get("CAMPUSBOT_POLL_INTERVAL", "10"))
# Fixed delay before each telemetry stream reconnect
RECONNECT_DELAY_SECONDS = float(os.environ.get("CAMPUSBOT_RECONNECT_DELAY", "2"))

LOG_FILE = os.environ.get("CAMPUSBOT_LOG_FILE", "campusbot_client.log")
LOG_LEVEL = os.environ.get("CAMPUSBOT_LOG_LEVEL", "INFO")

# Durable storage keys
CART_STORAGE_KEY = "campusbot_cart"
TOKEN_STORAGE_KEY = "campusbot_token"
USER_STORAGE_KEY = "campusbot_user"

# Campus fallback coordinates used when checkout has no explicit location
DEFAULT_DELIVERY_LAT = 35.7871
DEFAULT_DELIVERY_LNG = -78.6701
