import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "default-secret-key")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'shelfmark.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
    SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "1") == "1"

    PAGE_SIZE_DEFAULT = int(os.environ.get("PAGE_SIZE_DEFAULT", "10"))
    PAGE_SIZE_MAX = int(os.environ.get("PAGE_SIZE_MAX", "100"))
    TITLE_MAX_LENGTH = int(os.environ.get("TITLE_MAX_LENGTH", "200"))
    URL_MAX_LENGTH = int(os.environ.get("URL_MAX_LENGTH", "2000"))

    EVENT_STREAM_HEARTBEAT_SECONDS = float(
        os.environ.get("EVENT_STREAM_HEARTBEAT_SECONDS", "15")
    )
    EVENT_STREAM_MAX_SECONDS = float(os.environ.get("EVENT_STREAM_MAX_SECONDS", "300"))
    CHANGE_FEED_QUEUE_SIZE = int(os.environ.get("CHANGE_FEED_QUEUE_SIZE", "256"))
    CHANGE_EVENT_RETENTION_HOURS = int(
        os.environ.get("CHANGE_EVENT_RETENTION_HOURS", "24")
    )
    CHANGE_EVENT_PRUNE_INTERVAL_MINUTES = int(
        os.environ.get("CHANGE_EVENT_PRUNE_INTERVAL_MINUTES", "60")
    )


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SCHEDULER_ENABLED = False
    EVENT_STREAM_HEARTBEAT_SECONDS = 0.05
    EVENT_STREAM_MAX_SECONDS = 0.2
