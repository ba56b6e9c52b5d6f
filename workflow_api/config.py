import os


def env(name: str, default: str = None) -> str:
    v = os.getenv(name, default)
    if v is None or v == "":
        raise RuntimeError(f"Missing env var: {name}")
    return v


def env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


ENGINE_REST = os.getenv("ENGINE_REST", "http://camunda:8080/engine-rest")  # docker service name
CAMUNDA_USER = os.getenv("CAMUNDA_USER")
CAMUNDA_PASS = os.getenv("CAMUNDA_PASS")
ENGINE_TIMEOUT_SEC = float(os.getenv("ENGINE_TIMEOUT_SEC", "30"))

AUDIT_TO_DB = env_flag("AUDIT_TO_DB")

MAILHOG_HOST = os.getenv("MAILHOG_HOST", "mailhog")
MAILHOG_PORT = int(os.getenv("MAILHOG_PORT", "1025"))
FROM_EMAIL = os.getenv("FROM_EMAIL", "noreply@local.com")
NOTIFY_EMAIL = env_flag("NOTIFY_EMAIL")
NOTIFY_EMAIL_DOMAIN = os.getenv("NOTIFY_EMAIL_DOMAIN", "local.com")
PROCESS_OWNER_EMAIL = os.getenv("PROCESS_OWNER_EMAIL")

PRIMARY_MONGO_URI = os.getenv("PRIMARY_MONGO_URI", "mongodb://localhost:27017/primarydb")
SECONDARY_MONGO_URI = os.getenv("SECONDARY_MONGO_URI", "mongodb://localhost:27017/secondarydb")
ARCHIVE_TASKS = env_flag("ARCHIVE_TASKS")

EVENT_SYNC = env_flag("EVENT_SYNC", "true")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
