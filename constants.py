import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
REDIS_DB = int(os.getenv("REDIS_DB", 0))

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

# Optimistic-lock retries for a single room document update
STORE_MAX_RETRIES = int(os.getenv("STORE_MAX_RETRIES", 5))

# Client side: how long a remote playback event suppresses local re-emission
ECHO_GUARD_SECONDS = float(os.getenv("ECHO_GUARD_SECONDS", 1.0))
