from dotenv import load_dotenv
load_dotenv()

import os

# -----------------------------
# Client
# -----------------------------
API_URL = os.getenv("DELIVERYCAST_API_URL", "http://localhost:3001/api")
SOCKET_URL = os.getenv("DELIVERYCAST_SOCKET_URL", "ws://localhost:3001/ws/drivers")
API_TIMEOUT_S = float(os.getenv("DELIVERYCAST_API_TIMEOUT_S", "10"))
SESSION_FILE = os.getenv(
    "DELIVERYCAST_SESSION_FILE",
    os.path.join(os.path.expanduser("~"), ".deliverycast", "session.json"),
)

# -----------------------------
# Broadcast coordination
# -----------------------------
BROADCAST_MIN_FETCH_INTERVAL_S = float(os.getenv("BROADCAST_MIN_FETCH_INTERVAL_S", "30"))
BROADCAST_POLL_INTERVAL_S = float(os.getenv("BROADCAST_POLL_INTERVAL_S", "60"))
BROADCAST_DEFAULT_DURATION_S = int(os.getenv("BROADCAST_DEFAULT_DURATION_S", "60"))
BROADCAST_TICK_S = float(os.getenv("BROADCAST_TICK_S", "1"))

# -----------------------------
# Realtime transport
# -----------------------------
SOCKET_MAX_RECONNECT_ATTEMPTS = int(os.getenv("SOCKET_MAX_RECONNECT_ATTEMPTS", "5"))
SOCKET_RECONNECT_DELAY_S = float(os.getenv("SOCKET_RECONNECT_DELAY_S", "1"))
SOCKET_RECONNECT_DELAY_MAX_S = float(os.getenv("SOCKET_RECONNECT_DELAY_MAX_S", "5"))

# -----------------------------
# Sandbox backend
# -----------------------------
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = "HS256"
JWT_EXPIRE_MIN = int(os.getenv("JWT_EXPIRE_MIN", "60"))
DISPATCH_RADIUS_KM = float(os.getenv("DISPATCH_RADIUS_KM", "10"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
