import os
from dotenv import load_dotenv

load_dotenv()

MB = 1024 * 1024


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey")

    # Backend service
    STORAGE_BACKEND = os.getenv("TELEMED_STORAGE", "memory")  # memory/document
    DATABASE_URI = os.getenv("DATABASE_URI", "sqlite:///telemed.db")
    API_PREFIX = os.getenv("API_PREFIX", "/api")
    MAX_CONTENT_LENGTH = int(os.getenv("MAX_CONTENT_LENGTH", 50 * MB))
    MAX_IMAGE_SIZE = int(os.getenv("MAX_IMAGE_SIZE", 20 * MB))
    ANALYTICS_LIMIT = int(os.getenv("ANALYTICS_LIMIT", 1000))
    DEFAULT_HISTORY_LIMIT = int(os.getenv("DEFAULT_HISTORY_LIMIT", 10))
    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", 3000))

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_TO_FILE = os.getenv("LOG_TO_FILE", "False") == "True"

    # Client side
    API_BASE_URL = os.getenv("TELEMED_API_URL", "http://localhost:3000/api")
    API_TIMEOUT = float(os.getenv("TELEMED_API_TIMEOUT", 5))
    REPROBE_INTERVAL = float(os.getenv("TELEMED_REPROBE_INTERVAL", 30))
    LOCAL_STORAGE_DIR = os.getenv("TELEMED_LOCAL_DIR", ".telemed")
