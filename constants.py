import os

KV_MODE = os.getenv("KV_MODE", "local").lower()  # "local" (Redis) or "remote" (Upstash REST)

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

REDIS_URL = f"redis://:{REDIS_PASSWORD}@{REDIS_HOST}:{REDIS_PORT}" if REDIS_PASSWORD else f"redis://{REDIS_HOST}:{REDIS_PORT}"

UPSTASH_REDIS_REST_URL = os.getenv("UPSTASH_REDIS_REST_URL", None)
UPSTASH_REDIS_REST_TOKEN = os.getenv("UPSTASH_REDIS_REST_TOKEN", None)

KV_TIMEOUT_SECONDS = float(os.getenv("KV_TIMEOUT_SECONDS", 5))

CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]
CORS_ALLOWED_PARENT_DOMAIN = os.getenv("CORS_ALLOWED_PARENT_DOMAIN", "sdjz.wiki")

# Paste retention and size policy
DEFAULT_TTL_SECONDS = 60 * 60
MAX_TTL_SECONDS = 60 * 60 * 24 * 30
LONG_TERM_THRESHOLD_SECONDS = 60 * 60 * 24 * 7
PERMANENT_TTL_FLAG = -1  # legacy body value meaning "no expiry"
LONG_TERM_MAX_BYTES = int(0.6 * 1024 * 1024)
SHORT_TERM_MAX_BYTES = 2 * 1024 * 1024
PASTE_ID_LENGTH = 10
PASTE_ID_ATTEMPTS = 5

# LAN signaling relay
ROOM_TTL_SECONDS = 60 * 60
MAILBOX_TTL_SECONDS = 30 * 60
MAILBOX_CAPACITY = 50
ROOM_ID_LENGTH = 6
ROOM_ID_ATTEMPTS = 10
DEVICE_ID_LENGTH = 8
BROADCAST_TARGET = "*"

# Read-modify-write retries around conditional writes
CAS_MAX_RETRIES = 5
CAS_BASE_DELAY = 0.02
CAS_MAX_DELAY = 0.5

# Remote transport retries
TRANSPORT_MAX_RETRIES = 2
TRANSPORT_BASE_DELAY = 0.1

# Client side polling and transfer
POLL_INTERVAL_SECONDS = 2.0
POLL_FAILURE_THRESHOLD = 3
STALE_DEVICE_MS = 30 * 1000
FILE_CHUNK_SIZE = 32 * 1024
MAX_BUFFERED_AMOUNT = 8 * 1024 * 1024
BUFFER_POLL_INTERVAL = 0.05
# incomplete incoming transfers are dropped after this long
TRANSFER_TIMEOUT_MS = 60 * 1000
