import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
REDIS_DB = int(os.getenv("REDIS_DB", 0))

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

# Generated room ids: uppercase letters and digits
ROOM_ID_LENGTH = int(os.getenv("ROOM_ID_LENGTH", 6))
ROOM_ID_MAX_ATTEMPTS = int(os.getenv("ROOM_ID_MAX_ATTEMPTS", 20))

# 0 replays the whole room log
MESSAGE_HISTORY_LIMIT = int(os.getenv("MESSAGE_HISTORY_LIMIT", 0))
MAX_MESSAGE_LENGTH = int(os.getenv("MAX_MESSAGE_LENGTH", 4000))

# Pending outbound events per connection before the connection is closed
OUTBOX_MAX_SIZE = int(os.getenv("OUTBOX_MAX_SIZE", 1000))
