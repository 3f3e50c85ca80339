import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
REDIS_DB = int(os.getenv("REDIS_DB", 0))
REDIS_SOCKET_TIMEOUT = float(os.getenv("REDIS_SOCKET_TIMEOUT", 5.0))

# Takes precedence over the host/port settings when set
REDIS_URL = os.getenv("REDIS_URL", None)

# "redis" in production, "memory" for a single process without a Redis server
STORE_BACKEND = os.getenv("STORE_BACKEND", "redis")
STORE_MAX_RETRIES = int(os.getenv("STORE_MAX_RETRIES", 10))

RELAY_POLL_TIMEOUT = float(os.getenv("RELAY_POLL_TIMEOUT", 1.0))
RELAY_RETRY_DELAY = float(os.getenv("RELAY_RETRY_DELAY", 1.0))

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", os.getenv("APP_PORT", 8000)))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

SYSTEM_USER = "system"
