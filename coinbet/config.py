"""
Configuration management for coinbet.
Supports config.json with environment variable overrides.
All paths are resolved relative to the project root.
"""

import copy
import json
import os
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field

from dotenv import load_dotenv

load_dotenv()

# Project root directory (parent of 'coinbet' folder)
PROJECT_ROOT = Path(__file__).parent.parent


def get_env(key: str, default: str = None) -> Optional[str]:
    """Get environment variable with optional default."""
    return os.environ.get(key, default)


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    val = os.environ.get(key)
    if val is None:
        return default
    return val.lower() in ("true", "1", "yes", "on")


def get_env_int(key: str, default: int = 0) -> int:
    """Get integer environment variable."""
    val = os.environ.get(key)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def get_env_float(key: str, default: float = 0.0) -> float:
    """Get float environment variable."""
    val = os.environ.get(key)
    if val is None:
        return default
    try:
        return float(val)
    except ValueError:
        return default


# ==================== Configuration Models ====================

class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = True
    name: str = "Coinbet"


class SecurityConfig(BaseModel):
    admin_username: str = "admin"
    admin_password_hash: str = ""
    secret_key: str = "CHANGE_THIS_IN_PRODUCTION_PLEASE"
    token_max_age_hours: int = 24


class TierConfig(BaseModel):
    id: int
    payout_multiplier: float
    win_probability_percent: float


def default_tiers() -> List[TierConfig]:
    return [
        TierConfig(id=1, payout_multiplier=1.9, win_probability_percent=50),
        TierConfig(id=2, payout_multiplier=4.9, win_probability_percent=30),
        TierConfig(id=3, payout_multiplier=9.9, win_probability_percent=10),
    ]


class GameConfig(BaseModel):
    min_stake: float = 1.5
    max_conflict_retries: int = 3
    tiers: List[TierConfig] = Field(default_factory=default_tiers)


class WalletConfig(BaseModel):
    min_deposit: float = 10.0
    min_withdrawal: float = 20.0
    demo_balance: float = 1000.0


class RateLimitConfig(BaseModel):
    enabled: bool = True
    bet_requests: str = "30/minute"  # For placing bets
    api_requests: str = "60/minute"  # For general API calls


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_to_file: bool = False
    formatter: str = "color"


class PathsConfig(BaseModel):
    """All paths are relative to PROJECT_ROOT."""
    database: str = "data/coinbet.db"
    log_file: str = "data/app.log"
    busy_timeout_seconds: float = 5.0

    def get_db_path(self) -> Path:
        return PROJECT_ROOT / self.database

    def get_log_path(self) -> Path:
        return PROJECT_ROOT / self.log_file


class AppConfig(BaseModel):
    """Main application configuration."""
    server: ServerConfig = Field(default_factory=ServerConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    game: GameConfig = Field(default_factory=GameConfig)
    wallet: WalletConfig = Field(default_factory=WalletConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)


# ==================== Configuration Loading ====================

def load_config() -> AppConfig:
    """
    Load configuration from config.json with environment variable overrides.
    Environment variables take precedence over config.json values.
    """
    import bcrypt

    config_path = PROJECT_ROOT / "config.json"

    # Start with defaults
    file_data = {}

    # Load from config.json if it exists
    if config_path.exists():
        with open(config_path, "r") as f:
            file_data = json.load(f)

    # Auto-hash password if it's not already hashed. Only the file's own
    # contents are written back, never environment overrides.
    if "security" in file_data:
        current_pwd = file_data["security"].get("admin_password_hash", "")
        if current_pwd and not (current_pwd.startswith("$2") and len(current_pwd) == 60):
            print("Configuration: Detected plain text admin password. Hashing and updating config.json...")
            hashed_bytes = bcrypt.hashpw(current_pwd.encode("utf-8"), bcrypt.gensalt())
            file_data["security"]["admin_password_hash"] = hashed_bytes.decode("utf-8")
            try:
                with open(config_path, "w") as f:
                    json.dump(file_data, f, indent=4)
            except (OSError, PermissionError):
                print("Configuration: Warning - Could not update config.json (Read-Only filesystem). Running with hashed password in memory only.")

    data = copy.deepcopy(file_data)

    # Apply environment variable overrides
    if get_env("SERVER_HOST"):
        data.setdefault("server", {})["host"] = get_env("SERVER_HOST")
    if get_env("SERVER_PORT"):
        data.setdefault("server", {})["port"] = get_env_int("SERVER_PORT", 8000)
    if get_env("DEBUG"):
        data.setdefault("server", {})["debug"] = get_env_bool("DEBUG")

    if get_env("SECRET_KEY"):
        data.setdefault("security", {})["secret_key"] = get_env("SECRET_KEY")
    if get_env("ADMIN_USERNAME"):
        data.setdefault("security", {})["admin_username"] = get_env("ADMIN_USERNAME")

    if get_env("DB_PATH"):
        data.setdefault("paths", {})["database"] = get_env("DB_PATH")

    if get_env("MIN_STAKE"):
        data.setdefault("game", {})["min_stake"] = get_env_float("MIN_STAKE", 1.5)

    if get_env("LOG_LEVEL"):
        data.setdefault("logging", {})["level"] = get_env("LOG_LEVEL")
    if get_env("LOG_TO_FILE"):
        data.setdefault("logging", {})["log_to_file"] = get_env_bool("LOG_TO_FILE")
    if get_env("LOG_FORMATTER"):
        data.setdefault("logging", {})["formatter"] = get_env("LOG_FORMATTER")

    if get_env("RATE_LIMIT_ENABLED"):
        data.setdefault("rate_limit", {})["enabled"] = get_env_bool("RATE_LIMIT_ENABLED", True)
    if get_env("RATE_LIMIT_BET_REQUESTS"):
        data.setdefault("rate_limit", {})["bet_requests"] = get_env("RATE_LIMIT_BET_REQUESTS")
    if get_env("RATE_LIMIT_API_REQUESTS"):
        data.setdefault("rate_limit", {})["api_requests"] = get_env("RATE_LIMIT_API_REQUESTS")

    # An env password is never written back, only hashed in memory
    if get_env("ADMIN_PASSWORD"):
        hashed_bytes = bcrypt.hashpw(get_env("ADMIN_PASSWORD").encode("utf-8"), bcrypt.gensalt())
        data.setdefault("security", {})["admin_password_hash"] = hashed_bytes.decode("utf-8")

    return AppConfig(**data)


# Global config instance
settings = load_config()
