"""codecache Configuration."""
import os
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_paths(name: str) -> list[Path]:
    value = os.getenv(name, "")
    return [Path(item).expanduser() for item in value.split(os.pathsep) if item.strip()]

# Project root (one level up from codecache/)
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Database
DB_PATH = Path(os.getenv("CODECACHE_DB_PATH", str(PROJECT_ROOT / "data" / "codecache.db")))

# Cache refresh tuning
BATCH_SIZE = max(1, _env_int("CODECACHE_BATCH_SIZE", 100))
SCAN_WORKERS = max(0, _env_int("CODECACHE_SCAN_WORKERS", 0))  # 0 = one per CPU
OPERATION_HISTORY = max(1, _env_int("CODECACHE_OPERATION_HISTORY", 40))

# File watcher
WATCH_ENABLED = _env_bool("CODECACHE_WATCH_ENABLED", False)
WATCH_PATHS = _env_paths("CODECACHE_WATCH_PATHS")

# Observability
OTEL_ENABLED = _env_bool("CODECACHE_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("CODECACHE_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("CODECACHE_OTEL_SERVICE_NAME", "codecache")
PROM_PORT = _env_int("CODECACHE_PROM_PORT", 9464)

# Server settings
HOST = os.getenv("CODECACHE_HOST", "127.0.0.1")
PORT = _env_int("CODECACHE_PORT", 8000)

# CORS
FRONTEND_ORIGIN = os.getenv("CODECACHE_FRONTEND_ORIGIN", "http://localhost:3000")


def scan_workers() -> int:
    """Worker pool size for per-file scanning."""
    if SCAN_WORKERS > 0:
        return SCAN_WORKERS
    return os.cpu_count() or 1
