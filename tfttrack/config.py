from __future__ import annotations

import logging
import os
import platform
import subprocess
from pathlib import Path
from typing import Any, Dict

import keyring
import yaml
from keyring.errors import KeyringError


APP_DIR_NAME = "tfttrack"
CONFIG_FILE_NAME = "config.yaml"
DB_FILE_NAME = "tfttrack.db"
KEYRING_SERVICE = "tfttrack.riot"


DEFAULT_CONFIG: Dict[str, Any] = {
    "riot": {
        "api_key_env": "RIOT_API_KEY",
        "region": "europe",  # routing for account/match
        "platform": "euw1",  # platform for summoner/league/spectator
        "supported_region": "EUW1",
        "timeout_s": 8,
        "max_attempts": 3,
        "live_cache_ttl_s": 30,
    },
    "assets": {
        "catalog_url": "https://raw.communitydragon.org/latest/cdragon/tft/en_us.json",
        "catalog_path": "",
        "asset_base_url": "https://raw.communitydragon.org/latest/game/",
        "ttl_s": 6 * 60 * 60,
        "timeout_s": 5,
    },
    "cache": {
        "rank_ttl_s": 60,
        "live_ttl_s": 45,
        "avg_placement_ttl_s": 15 * 60,
        "leaderboard_ttl_s": 60,
        "player_ttl_s": 30,
        "player_refresh_ttl_s": 5 * 60,
    },
    "sync": {
        "batch_limit": 10,
        "lock_ttl_s": 120,
        "pause_s": 0.2,
        "leaderboard_concurrency": 5,
        "preview_concurrency": 2,
        "recent_match_count": 10,
    },
    "cron": {
        "enabled": False,
        "interval_s": 900,
        "secret_env": "CRON_SECRET",
    },
    "admin": {
        "password_env": "ADMIN_PASSWORD",
    },
    "logging": {
        "level": "INFO",
    },
    "db": {
        "path": "",
    },
}


def _user_config_dir() -> Path:
    system = platform.system()
    if system == "Windows":
        appdata = os.getenv("APPDATA")
        if appdata:
            return Path(appdata) / APP_DIR_NAME
    elif system == "Darwin":
        return Path.home() / "Library" / "Application Support" / APP_DIR_NAME
    # Linux and others
    xdg = os.getenv("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / APP_DIR_NAME
    return Path.home() / ".config" / APP_DIR_NAME


def _user_data_dir() -> Path:
    system = platform.system()
    if system == "Windows":
        localappdata = os.getenv("LOCALAPPDATA") or os.getenv("APPDATA")
        if localappdata:
            return Path(localappdata) / APP_DIR_NAME
    elif system == "Darwin":
        return Path.home() / "Library" / "Application Support" / APP_DIR_NAME
    xdg = os.getenv("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / APP_DIR_NAME
    return Path.home() / ".local" / "share" / APP_DIR_NAME


def config_path() -> str:
    override = os.getenv("TFTTRACK_CONFIG")
    if override:
        return override
    return str(_user_config_dir() / CONFIG_FILE_NAME)


def db_path(cfg: Dict[str, Any] | None = None) -> str:
    configured = ((cfg or {}).get("db") or {}).get("path")
    if configured:
        return str(configured)
    return str(_user_data_dir() / DB_FILE_NAME)


def ensure_paths() -> None:
    Path(config_path()).parent.mkdir(parents=True, exist_ok=True)
    _user_data_dir().mkdir(parents=True, exist_ok=True)
    cfg_file = Path(config_path())
    if not cfg_file.exists():
        cfg_file.write_text(yaml.safe_dump(DEFAULT_CONFIG, sort_keys=False))


def merge_defaults(cfg: Dict[str, Any], defaults: Dict[str, Any] = DEFAULT_CONFIG) -> Dict[str, Any]:
    out = dict(cfg)
    for k, v in defaults.items():
        if isinstance(v, dict):
            out[k] = merge_defaults(out.get(k) or {}, v)
        else:
            out.setdefault(k, v)
    return out


def get_config() -> Dict[str, Any]:
    ensure_paths()
    with open(config_path(), "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}
    return merge_defaults(cfg)


def save_config(cfg: Dict[str, Any]) -> None:
    ensure_paths()
    with open(config_path(), "w", encoding="utf-8") as f:
        yaml.safe_dump(cfg, f, sort_keys=False)


def open_config_in_editor() -> bool:
    path = config_path()
    try:
        if platform.system() == "Windows":
            os.startfile(path)  # type: ignore[attr-defined]
        elif platform.system() == "Darwin":
            subprocess.run(["open", path], check=False)
        else:
            subprocess.run(["xdg-open", path], check=False)
        return True
    except OSError:
        return False


def get_api_key(cfg: Dict[str, Any] | None = None) -> str | None:
    # prefer keyring; headless hosts often have no backend at all
    try:
        key = keyring.get_password(KEYRING_SERVICE, "api_key")
    except KeyringError:
        key = None
    if key:
        return key
    cfg = cfg if cfg is not None else get_config()
    env_name = cfg.get("riot", {}).get("api_key_env", "RIOT_API_KEY")
    return os.getenv(env_name) or None


def set_api_key(value: str) -> None:
    keyring.set_password(KEYRING_SERVICE, "api_key", value)


def get_admin_password(cfg: Dict[str, Any]) -> str | None:
    env_name = cfg.get("admin", {}).get("password_env", "ADMIN_PASSWORD")
    return os.getenv(env_name) or None


def get_cron_secret(cfg: Dict[str, Any]) -> str | None:
    env_name = cfg.get("cron", {}).get("secret_env", "CRON_SECRET")
    value = (os.getenv(env_name) or "").strip()
    return value or None


def configure_logging(cfg: Dict[str, Any]) -> None:
    level_name = str(cfg.get("logging", {}).get("level", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
