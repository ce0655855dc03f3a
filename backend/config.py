"""Centralized configuration: all env vars in one place."""
import os
import logging
from dotenv import load_dotenv

load_dotenv()

# --- Server ---
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "5003"))
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "")

# --- Question generation service ---
GENERATION_URL = os.getenv("GENERATION_URL", "http://localhost:5004/quiz/generate")
GENERATION_TIMEOUT = int(os.getenv("GENERATION_TIMEOUT", "120"))
GENERATION_MAX_RETRIES = 3

# --- WebSocket Security ---
WS_RATE_LIMIT_PER_SEC = 10  # max messages per second per connection
MAX_WS_MESSAGE_SIZE = 4096  # bytes

# --- Rooms ---
ROOM_CODE_LENGTH = 6
MAX_ROOM_CODE_ATTEMPTS = 10
ROOM_TTL_SECONDS = int(os.getenv("ROOM_TTL_SECONDS", "0"))  # 0 = never evict
ROOM_CLEANUP_INTERVAL = 60  # seconds

# --- Game ---
QUESTION_TIME_LIMIT = int(os.getenv("QUESTION_TIME_LIMIT", "20"))  # seconds per question
MAX_USERNAME_LENGTH = 20
MAX_TITLE_LENGTH = 200
MAX_QUESTION_TEXT_LENGTH = 2000
MAX_OPTION_LENGTH = 500

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "")  # empty = stdout only


def setup_logging():
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if LOG_FILE:
        handlers.append(logging.FileHandler(LOG_FILE))
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
