# config.py
# Description: Configuration loading for smart_stock (TOML file + environment overrides).
#
# Imports
import copy
import os
import tomllib
import uuid
from pathlib import Path
from typing import Dict, Any, Optional, Union
#
# 3rd-Party Imports
import toml
from loguru import logger
#
# Local Imports
#
#######################################################################################################################
#
# Functions:

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "smart_stock" / "config.toml"
CONFIG_PATH_ENV_VAR = "SMART_STOCK_CONFIG"
REMOTE_URL_ENV_VAR = "SMART_STOCK_REMOTE_URL"
REMOTE_KEY_ENV_VAR = "SMART_STOCK_REMOTE_KEY"

CONFIG_TOML_CONTENT = """
# Configuration for smart_stock
# Located at: ~/.config/smart_stock/config.toml (override with SMART_STOCK_CONFIG)

[general]
log_level = "INFO"
# Identifies this device in system logs. Generated on first run when empty.
client_id = ""

[logging]
log_filename = "smart_stock.log"
file_log_level = "INFO"
log_max_bytes = 10485760 # 10 MB
log_backup_count = 5
# JSON file that receives METRIC records only. Empty string disables it.
metrics_log_filename = "smart_stock_metrics.json"

[database]
inventory_db_path = "~/.local/share/smart_stock/inventory.db"
# Only used when cursor_store = "file".
sync_state_path = "~/.local/share/smart_stock/sync_state.json"
# "db" keeps lastSyncedAt in the inventory database, "file" in sync_state_path.
cursor_store = "db"

[remote]
# Base URL of the hosted store, e.g. "https://<project>.supabase.co". Env: SMART_STOCK_REMOTE_URL
url = ""
# API key sent as apikey/Bearer. Prefer the SMART_STOCK_REMOTE_KEY env var.
api_key = ""
schema = "rest/v1"
timeout_seconds = 30
page_size = 1000

[sync]
interval_seconds = 300
sync_on_start = true
# "upsert" (idempotent by id) or "insert" (duplicates tolerated)
audit_log_push_mode = "upsert"
"""

try:
    DEFAULT_CONFIG_FROM_TOML: Dict[str, Any] = tomllib.loads(CONFIG_TOML_CONTENT)
except tomllib.TOMLDecodeError as e:
    logger.critical(f"FATAL: Could not parse internal CONFIG_TOML_CONTENT: {e}. Application cannot start correctly.")
    DEFAULT_CONFIG_FROM_TOML = {}


def deep_merge_dicts(base: Dict, update: Dict) -> Dict:
    """Recursively merges update_dict into base_dict."""
    merged = copy.deepcopy(base)
    for key, value in update.items():
        if isinstance(value, dict) and key in merged and isinstance(merged[key], dict):
            merged[key] = deep_merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_config_path() -> Path:
    env_path = os.getenv(CONFIG_PATH_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    remote = config.setdefault("remote", {})
    env_url = os.getenv(REMOTE_URL_ENV_VAR)
    if env_url:
        remote["url"] = env_url
        logger.debug(f"Remote URL taken from {REMOTE_URL_ENV_VAR}.")
    env_key = os.getenv(REMOTE_KEY_ENV_VAR)
    if env_key:
        remote["api_key"] = env_key
        logger.debug(f"Remote API key taken from {REMOTE_KEY_ENV_VAR}.")
    return config


# --- Primary Configuration Loading Logic ---
_CONFIG_CACHE: Optional[Dict[str, Any]] = None
_CONFIG_CACHE_PATH: Optional[Path] = None


def load_settings(force_reload: bool = False, config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Loads settings from the TOML config file, merged over the built-in defaults.

    If the file doesn't exist, it's created with the default content.
    Environment variables override the [remote] url and api_key.
    """
    global _CONFIG_CACHE, _CONFIG_CACHE_PATH
    path = Path(config_path).expanduser() if config_path else get_config_path()
    if _CONFIG_CACHE is not None and not force_reload and _CONFIG_CACHE_PATH == path:
        return _CONFIG_CACHE

    loaded_config = copy.deepcopy(DEFAULT_CONFIG_FROM_TOML)

    if not path.exists():
        logger.info(f"Config file not found at {path}. Creating with default values.")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                f.write(CONFIG_TOML_CONTENT)
            logger.info(f"Created default config file at {path}")
        except OSError as e:
            logger.error(f"Could not create default config file {path}: {e}. Using internal defaults.")
    else:
        logger.info(f"Attempting to load config from: {path}")
        try:
            with open(path, "rb") as f:
                user_config_from_file = tomllib.load(f)
            loaded_config = deep_merge_dicts(loaded_config, user_config_from_file)
            logger.info(f"Successfully loaded and merged config from {path}")
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Error decoding TOML config file {path}: {e}. Using internal defaults.")
        except OSError as e:
            logger.error(f"Could not read config file {path}: {e}. Using internal defaults.")

    _CONFIG_CACHE = _apply_env_overrides(loaded_config)
    _CONFIG_CACHE_PATH = path
    logger.debug(f"load_settings returning config with top-level keys: {list(loaded_config.keys())}")
    return _CONFIG_CACHE


def get_cli_setting(section: str, key: str, default: Any = None) -> Any:
    """Helper to get a specific setting from the loaded configuration."""
    config = load_settings()
    section_data = config.get(section)
    if isinstance(section_data, dict):
        return section_data.get(key, default)
    return default


def save_setting(section: str, key: str, value: Any, config_path: Optional[Union[str, Path]] = None) -> None:
    """
    Persists one setting to the user's config file and refreshes the cache.

    Only the values already in the file plus this one are written; defaults
    are not copied into the file.
    """
    path = Path(config_path).expanduser() if config_path else get_config_path()
    file_data: Dict[str, Any] = {}
    if path.exists():
        try:
            with open(path, "rb") as f:
                file_data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Refusing to overwrite unreadable config file {path}: {e}")
            raise
    file_data.setdefault(section, {})[key] = value
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        toml.dump(file_data, f)
    logger.info(f"Saved [{section}].{key} to {path}")
    load_settings(force_reload=True, config_path=path)


def get_client_id() -> str:
    """Returns the configured client id, generating and saving one on first use."""
    client_id = get_cli_setting("general", "client_id", "")
    if client_id:
        return client_id
    client_id = f"smart-stock-{uuid.uuid4().hex[:12]}"
    try:
        save_setting("general", "client_id", client_id, config_path=_CONFIG_CACHE_PATH)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Could not persist generated client id {client_id}: {e}")
        if _CONFIG_CACHE is not None:
            _CONFIG_CACHE.setdefault("general", {})["client_id"] = client_id
    return client_id


def _resolve_path(section: str, key: str) -> Path:
    default_value = DEFAULT_CONFIG_FROM_TOML.get(section, {}).get(key)
    return Path(get_cli_setting(section, key, default_value)).expanduser().resolve()


def get_inventory_db_path() -> Path:
    return _resolve_path("database", "inventory_db_path")


def get_sync_state_path() -> Path:
    return _resolve_path("database", "sync_state_path")


def get_log_file_path() -> Path:
    default_log_filename = DEFAULT_CONFIG_FROM_TOML.get("logging", {}).get("log_filename", "smart_stock.log")
    log_filename = get_cli_setting("logging", "log_filename", default_log_filename)
    log_file_path = get_inventory_db_path().parent / log_filename
    try:
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Could not create log directory {log_file_path.parent}: {e}")
    return log_file_path


def get_metrics_log_file_path() -> Optional[Path]:
    filename = get_cli_setting("logging", "metrics_log_filename", "")
    if not filename:
        return None
    return get_log_file_path().parent / filename

#
# End of config.py
#######################################################################################################################
