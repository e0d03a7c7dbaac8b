"""Runtime settings for DevDex.

Settings are read from config/devdex.yaml and then overridden by
environment variables (a .env file is honoured via python-dotenv).
"""

import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from ..core.constants import DEFAULT_MODEL, DEFAULT_STORAGE_BUCKET, MAX_FILE_CHARS

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "devdex.yaml"


class DatabaseSettings(BaseModel):
    url: str = "sqlite:///devdex.db"
    echo: bool = False
    pool_size: int = 5


class StorageSettings(BaseModel):
    backend: str = "local"                # memory | local | supabase
    bucket: str = DEFAULT_STORAGE_BUCKET
    root_dir: str = "data/storage"
    required: bool = False                # strict mode: storage failure fails the file
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    request_timeout: float = 30.0


class LLMSettings(BaseModel):
    provider: str = "gemini"              # gemini | openai
    model: str = DEFAULT_MODEL
    api_key: Optional[str] = None
    temperature: float = 0.1
    chat_temperature: float = 0.7
    max_output_tokens: int = 2048
    request_timeout: float = 120.0


class AnalysisSettings(BaseModel):
    max_file_chars: int = MAX_FILE_CHARS
    auto_run: bool = True


class OracleSettings(BaseModel):
    max_file_chars: int = MAX_FILE_CHARS
    max_input_chars: int = 900_000
    session_idle_minutes: int = 120


class IngestionSettings(BaseModel):
    max_file_size_mb: int = 10
    max_files_per_batch: int = 20


class AdminSettings(BaseModel):
    password: str = "change-me"
    secret_key: str = "devdex-dev-secret-change-me"
    session_ttl_hours: int = 24


class ServerSettings(BaseModel):
    port: int = 9010
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:5173"]
    )


class DevDexSettings(BaseModel):
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)
    oracle: OracleSettings = Field(default_factory=OracleSettings)
    ingestion: IngestionSettings = Field(default_factory=IngestionSettings)
    admin: AdminSettings = Field(default_factory=AdminSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)


# env var -> (section, field)
_ENV_OVERRIDES = {
    "DATABASE_URL": ("database", "url"),
    "DEVDEX_STORAGE_BACKEND": ("storage", "backend"),
    "DEVDEX_STORAGE_BUCKET": ("storage", "bucket"),
    "SUPABASE_URL": ("storage", "supabase_url"),
    "SUPABASE_SERVICE_ROLE_KEY": ("storage", "supabase_key"),
    "DEVDEX_LLM_PROVIDER": ("llm", "provider"),
    "DEVDEX_LLM_MODEL": ("llm", "model"),
    "DEVDEX_ADMIN_PASSWORD": ("admin", "password"),
    "DEVDEX_SECRET_KEY": ("admin", "secret_key"),
}

_PROVIDER_KEY_ENV = {
    "gemini": ["GEMINI_API_KEY", "GOOGLE_API_KEY"],
    "openai": ["OPENAI_API_KEY"],
}

_settings: Optional[DevDexSettings] = None


def _load_yaml(config_path: Path) -> dict:
    if not config_path.exists():
        logger.warning(f"Config file not found at {config_path}, using defaults")
        return {}
    with open(config_path, "r") as f:
        return yaml.safe_load(f) or {}


def _apply_env_overrides(raw: dict) -> dict:
    for env_name, (section, field) in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            raw.setdefault(section, {})[field] = value

    llm = raw.setdefault("llm", {})
    if not llm.get("api_key"):
        provider = llm.get("provider", LLMSettings().provider)
        for env_name in _PROVIDER_KEY_ENV.get(provider, []):
            if os.getenv(env_name):
                llm["api_key"] = os.getenv(env_name)
                break
    return raw


def load_settings(config_path: Optional[Path] = None) -> DevDexSettings:
    """Build settings from YAML plus environment overrides."""
    raw = _load_yaml(Path(config_path) if config_path else DEFAULT_CONFIG_PATH)
    raw = _apply_env_overrides(raw)
    return DevDexSettings(**raw)


def get_settings(config_path: Optional[Path] = None) -> DevDexSettings:
    """Return the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings(config_path)
    return _settings


def reset_settings():
    """Drop the cached settings so the next get_settings() reloads."""
    global _settings
    _settings = None
