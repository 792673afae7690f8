from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings
import json
import logging
from pathlib import Path

# Set up logging
logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """App settings from environment (for container config)."""
    config_dir: str = "/config"
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


# Config file location
CONFIG_DIR = Path(Settings().config_dir)
CONFIG_FILE = CONFIG_DIR / "settings.json"

# Samsung Tizen browser UA; several origins only serve manifests to TV clients
TIZEN_USER_AGENT = (
    "Mozilla/5.0 (SMART-TV; Linux; Tizen 5.0) AppleWebKit/537.36 "
    "(KHTML, like Gecko) SamsungBrowser/2.1 Chrome/56.0.2924.0 TV Safari/537.36"
)


class CatalogSettings(BaseModel):
    """User-configurable catalog, resolver and prober settings."""
    # Network fetch pipeline
    fetch_timeout_ms: int = Field(default=10000, ge=1)  # Hard timeout for each direct or relay attempt
    # CORS relays tried in order after the direct fetch fails.
    # "{url}" is replaced with the percent-encoded target URL.
    cors_relays: list[str] = [
        "https://corsproxy.io/?{url}",
        "https://api.allorigins.win/get?url={url}",
        "https://thingproxy.freeboard.io/fetch/{url}",
    ]
    manifest_user_agent: str = TIZEN_USER_AGENT
    # Manifest resolution
    resolve_concurrency: int = Field(default=5, ge=1)  # Manifests resolved simultaneously per slice
    resolution_cache_ttl: int = Field(default=300, ge=0)  # Seconds a resolved URL stays valid
    # Liveness probing
    probe_concurrency: int = Field(default=10, ge=1)  # Channels probed simultaneously per slice
    probe_timeout_ms: int = Field(default=8000, ge=1)  # A probe exceeding this is reported dead
    # Combine: minimum number of distinct sources for a channel group
    combine_min_sources: int = Field(default=2, ge=1)
    # Backend log level: DEBUG, INFO, WARNING, ERROR, CRITICAL
    backend_log_level: str = "INFO"


# In-memory cache of settings
_cached_settings: CatalogSettings | None = None


def ensure_config_dir():
    """Ensure config directory exists."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    logger.info("Ensured config directory exists: %s", CONFIG_DIR)


def load_settings() -> CatalogSettings:
    """Load settings from file or return defaults."""
    global _cached_settings

    if _cached_settings is not None:
        return _cached_settings

    logger.info("Loading settings from %s", CONFIG_FILE)

    if CONFIG_FILE.exists():
        try:
            data = json.loads(CONFIG_FILE.read_text())
            _cached_settings = CatalogSettings(**data)
            logger.info("Loaded settings successfully")
            return _cached_settings
        except Exception as e:
            logger.error("Failed to load settings from %s: %s", CONFIG_FILE, e)

    logger.info("Using default settings (no config file found or failed to parse)")
    _cached_settings = CatalogSettings()
    return _cached_settings


def save_settings(settings: CatalogSettings) -> None:
    """Save settings to file."""
    global _cached_settings

    ensure_config_dir()

    try:
        settings_json = json.dumps(settings.model_dump(), indent=2)
        CONFIG_FILE.write_text(settings_json)
        _cached_settings = settings
        logger.info("Settings saved successfully to %s", CONFIG_FILE)
    except Exception as e:
        logger.error("Failed to save settings to %s: %s", CONFIG_FILE, e)
        raise


def clear_settings_cache() -> None:
    """Clear the cached settings (forces reload)."""
    global _cached_settings
    _cached_settings = None
    logger.info("Settings cache cleared")


def get_settings() -> CatalogSettings:
    """Get the current catalog settings."""
    return load_settings()


def get_log_level_from_env() -> str:
    """Get log level from environment variable or default to INFO."""
    return Settings().log_level.upper()


def set_log_level(level: str) -> None:
    """Set the logging level for all loggers dynamically."""
    level_upper = level.upper()

    valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if level_upper not in valid_levels:
        logger.warning("Invalid log level '%s', using INFO", level)
        level_upper = "INFO"

    numeric_level = getattr(logging, level_upper)

    # Set root logger level
    logging.getLogger().setLevel(numeric_level)

    # Set level for all existing loggers
    for logger_name in logging.root.manager.loggerDict:
        logger_obj = logging.getLogger(logger_name)
        logger_obj.setLevel(numeric_level)

    logger.info("Log level set to %s", level_upper)
