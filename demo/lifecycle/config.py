# Shared configuration, helpers, and constants for the lifecycle service

import os
import uuid
from pathlib import Path
from datetime import datetime, timezone
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------
_script_dir = Path(__file__).resolve().parent.parent          # demo/
for _env_path in [_script_dir / ".env", _script_dir.parent / ".env", Path.cwd() / ".env"]:
    if _env_path.is_file():
        load_dotenv(_env_path, override=True)
        break
else:
    load_dotenv(override=True)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise RuntimeError(f"FATAL: {name} must be a number, got {raw!r}")
    if value <= 0:
        raise RuntimeError(f"FATAL: {name} must be positive, got {raw!r}")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")

# ---------------------------------------------------------------------------
# Connection strings
# ---------------------------------------------------------------------------
MONGODB_URL   = os.getenv("MONGODB_URL", "mongodb://localhost:27017")
MONGODB_DB    = os.getenv("MONGODB_DB", "grievance_lifecycle")
STORE_BACKEND = os.getenv("STORE_BACKEND", "mongo").strip().lower()
if STORE_BACKEND not in ("mongo", "memory"):
    raise RuntimeError(f"FATAL: STORE_BACKEND must be 'mongo' or 'memory', got {STORE_BACKEND!r}")

# ---------------------------------------------------------------------------
# Sweep cadence: a minute while developing, an hour in production
# ---------------------------------------------------------------------------
APP_ENV = os.getenv("APP_ENV", "development").strip().lower()
_DEFAULT_SWEEP_INTERVAL = 3600.0 if APP_ENV == "production" else 60.0
SWEEP_INTERVAL_SECONDS = _env_float("SWEEP_INTERVAL_SECONDS", _DEFAULT_SWEEP_INTERVAL)
SWEEP_ENABLED          = _env_bool("SWEEP_ENABLED", True)
STORE_TIMEOUT_SECONDS  = _env_float("STORE_TIMEOUT_SECONDS", 10.0)

# ---------------------------------------------------------------------------
# Notarization
# ---------------------------------------------------------------------------
NOTARY_URL             = os.getenv("NOTARY_URL") or None
NOTARY_MAX_RETRIES     = int(_env_float("NOTARY_MAX_RETRIES", 3))
NOTARY_TIMEOUT_SECONDS = _env_float("NOTARY_TIMEOUT_SECONDS", 10.0)

# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------
SUBMIT_RATE_LIMIT = os.getenv("SUBMIT_RATE_LIMIT", "10/minute")

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def new_id() -> str:
    return str(uuid.uuid4())

def now_utc() -> datetime:
    return datetime.now(timezone.utc)
