import os
import sys
import tempfile
from functools import lru_cache
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _load_env_file_if_present() -> None:
    env_file = BASE_DIR / ".env"
    if not env_file.exists():
        return
    try:
        lines = env_file.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError:
        return

    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not key or key in os.environ:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        os.environ[key] = value


_load_env_file_if_present()


def _default_runtime_dir() -> Path:
    if getattr(sys, "frozen", False):
        candidates = [
            Path.home() / ".document_catalog" / "data",
            Path.cwd() / "data",
            Path(tempfile.gettempdir()) / "DocumentCatalog" / "data",
        ]
        for path in candidates:
            try:
                path.mkdir(parents=True, exist_ok=True)
                return path
            except OSError:
                continue
    return BASE_DIR / "data"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class Settings:
    def __init__(self) -> None:
        self.app_name: str = os.getenv("APP_NAME", "Document Catalog")
        self.app_env: str = os.getenv("APP_ENV", "dev")
        self.runtime_dir: Path = Path(os.getenv("RUNTIME_DIR", str(_default_runtime_dir()))).expanduser()
        self.runtime_dir.mkdir(parents=True, exist_ok=True)
        default_db_path: Path = self.runtime_dir / "catalog.db"
        self.database_url: str = os.getenv("DATABASE_URL", f"sqlite:///{default_db_path.as_posix()}")

        self.request_timeout_seconds: int = _env_int("REQUEST_TIMEOUT_SECONDS", 30)
        self.user_agent: str = os.getenv(
            "USER_AGENT",
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
            "Chrome/131.0.0.0 Safari/537.36",
        )
        self.target_base_url: str = os.getenv("TARGET_BASE_URL", "https://www.justice.gov").rstrip("/")

        # Discovery politeness and budgets.
        self.discovery_delay_ms: int = _env_int("DISCOVERY_DELAY_MS", 3000)
        self.discovery_max_hubs: int = _env_int("DISCOVERY_MAX_HUBS", 50)
        self.discovery_max_pages_per_hub: int = _env_int("DISCOVERY_MAX_PAGES_PER_HUB", 4)
        self.sitemap_max_sitemaps: int = _env_int("SITEMAP_MAX_SITEMAPS", 20)
        self.archive_limit_per_query: int = _env_int("ARCHIVE_LIMIT_PER_QUERY", 10000)
        self.archive_timeout_seconds: int = _env_int("ARCHIVE_TIMEOUT_SECONDS", 60)

        # Extraction limits and quality thresholds.
        self.extract_max_bytes: int = _env_int("EXTRACT_MAX_BYTES", 50 * 1024 * 1024)
        self.extract_timeout_seconds: int = _env_int("EXTRACT_TIMEOUT_SECONDS", 90)
        self.extract_min_chars_per_page: int = _env_int("EXTRACT_MIN_CHARS_PER_PAGE", 50)
        self.extract_min_text_chars: int = _env_int("EXTRACT_MIN_TEXT_CHARS", 50)
        self.extract_batch_delay_ms: int = _env_int("EXTRACT_BATCH_DELAY_MS", 2000)


@lru_cache
def get_settings() -> Settings:
    return Settings()
