"""Configuration loader for devflow.

Loads config from a YAML cascade: config/default.yaml is always loaded,
then environment-specific overrides, then environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from pydantic import BaseModel, Field

from devflow.core.exceptions import ConfigError


# ---------------------------------------------------------------------------
# Config schema
# ---------------------------------------------------------------------------

class DatabaseConfig(BaseModel):
    backend: str = "postgresql"
    host: str = "localhost"
    port: int = 5432
    dbname: str = "devflow"
    user: str = "devflow"
    password: str = "devflow"

    @property
    def connection_string(self) -> str:
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.dbname}"


class LLMConfig(BaseModel):
    provider: str = "openrouter"
    base_url: str = "https://openrouter.ai/api/v1"
    default_temperature: float = 0.3
    default_max_tokens: int = 8192
    attempt_timeout_seconds: float = 600.0
    retry_delay_seconds: float = 2.0


class RetryConfig(BaseModel):
    """Baseline retry policy applied to every activity."""
    max_attempts: int = 3
    initial_interval_seconds: float = 5.0
    backoff_coefficient: float = 2.0
    maximum_interval_seconds: float = 120.0


class WorkflowConfig(BaseModel):
    approval_timeout_seconds: float = 24 * 60 * 60
    verification_retries: int = 1
    verification_cooldown_seconds: float = 30.0
    fix_loop_threshold: int = 2
    approval_policy: Literal["first_wins", "latest_wins"] = "first_wins"
    rollback_on_verification_failure: bool = False
    history_backend: Literal["memory", "postgresql"] = "memory"


class ChainConfig(BaseModel):
    backend: Literal["memory", "postgresql"] = "memory"
    retention_seconds: int = 7 * 24 * 60 * 60
    key_prefix: str = "task:chain:"


class NotificationConfig(BaseModel):
    enabled: bool = True
    webhook_url: Optional[str] = None
    timeout_seconds: float = 10.0
    subject_prefix: str = "[devflow]"


class ProjectConfig(BaseModel):
    project_dir: str = "."
    base_branch: str = "main"
    branch_prefix: str = "feature/task-"
    build_command: Optional[str] = "npm run build"
    test_command: Optional[str] = "npm test"
    install_command: Optional[str] = "npm install"
    command_timeout_seconds: int = 900


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class AppConfig(BaseModel):
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    chain: ChainConfig = Field(default_factory=ChainConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    project: ProjectConfig = Field(default_factory=ProjectConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# ---------------------------------------------------------------------------
# Cascade registry (models.yaml)
# ---------------------------------------------------------------------------

class BackendConfig(BaseModel):
    """One entry in a role's fallback cascade."""
    name: str
    kind: Literal["http", "cli"] = "http"
    model: str
    command: Optional[list[str]] = None


DEFAULT_CASCADES: dict[str, list[str]] = {
    "planner": [
        "google/gemini-3-pro-preview",
        "google/gemini-2.5-pro",
        "google/gemini-2.5-flash",
        "google/gemini-1.5-pro",
    ],
    "coder": [
        "gemini-3-flash-preview",
        "gemini-2.5-flash",
        "gemini-2.5-pro",
        "gemini-1.5-flash",
    ],
    "deployer": [
        "google/gemini-2.5-flash",
        "google/gemini-1.5-flash",
        "google/gemini-2.5-flash-lite",
        "google/gemini-2.0-flash-lite",
    ],
    "supervisor": [
        "google/gemini-2.5-flash",
        "google/gemini-1.5-flash",
        "google/gemini-2.5-flash-lite",
        "google/gemini-2.0-flash-lite",
    ],
}


# Roles whose backends must edit the checkout, so they run as agentic CLIs
CLI_ROLES = {"coder"}


def _default_backend(role: str, model: str) -> BackendConfig:
    if role in CLI_ROLES:
        return BackendConfig(
            name=f"gemini-cli-{model}", kind="cli", model=model, command=["gemini", "--yolo", "-m", model]
        )
    return BackendConfig(name=model, model=model)


class CascadeRegistry(BaseModel):
    """Maps agent roles to ordered backend cascades."""
    cascades: dict[str, list[BackendConfig]] = Field(default_factory=dict)

    def get_cascade(self, role: str) -> list[BackendConfig]:
        backends = self.cascades.get(role)
        if not backends:
            raise ConfigError(f"No cascade configured for role '{role}'. Update config/models.yaml.")
        return list(backends)

    def roles(self) -> list[str]:
        return sorted(self.cascades)

    @classmethod
    def defaults(cls) -> "CascadeRegistry":
        return cls(
            cascades={
                role: [_default_backend(role, model) for model in models]
                for role, models in DEFAULT_CASCADES.items()
            }
        )


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base, returning a new dict."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    return data if isinstance(data, dict) else {}


def _default_config_dir() -> Path:
    return Path(__file__).parent.parent.parent / "config"


def load_config(
    config_dir: Optional[Path] = None,
    env: Optional[str] = None,
) -> AppConfig:
    """Load application config from YAML cascade.

    Order: default.yaml -> {env}.yaml -> env vars (DATABASE_URL, etc.)
    """
    if config_dir is None:
        config_dir = _default_config_dir()

    merged = _load_yaml(config_dir / "default.yaml")

    if env:
        overlay = _load_yaml(config_dir / f"{env}.yaml")
        merged = _deep_merge(merged, overlay)

    db_url = os.getenv("DATABASE_URL")
    if db_url and db_url.startswith("postgresql://"):
        from urllib.parse import urlparse
        parsed = urlparse(db_url)
        merged.setdefault("database", {})
        if parsed.hostname:
            merged["database"]["host"] = parsed.hostname
        if parsed.port:
            merged["database"]["port"] = parsed.port
        if parsed.username:
            merged["database"]["user"] = parsed.username
        if parsed.password:
            merged["database"]["password"] = parsed.password
        if parsed.path and len(parsed.path) > 1:
            merged["database"]["dbname"] = parsed.path[1:]

    project_dir = os.getenv("DEVFLOW_PROJECT_DIR")
    if project_dir:
        merged.setdefault("project", {})["project_dir"] = project_dir

    webhook_url = os.getenv("DEVFLOW_WEBHOOK_URL")
    if webhook_url:
        merged.setdefault("notifications", {})["webhook_url"] = webhook_url

    try:
        return AppConfig(**merged)
    except ValueError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def load_cascade_registry(config_dir: Optional[Path] = None) -> CascadeRegistry:
    """Load the per-role cascades from models.yaml, falling back to defaults."""
    if config_dir is None:
        config_dir = _default_config_dir()

    data = _load_yaml(config_dir / "models.yaml")
    if not data.get("cascades"):
        return CascadeRegistry.defaults()

    cascades: dict[str, list[BackendConfig]] = {}
    for role, entries in data["cascades"].items():
        backends: list[BackendConfig] = []
        for entry in entries or []:
            # Bare strings are shorthand for an http backend of that model
            if isinstance(entry, str):
                backends.append(BackendConfig(name=entry, model=entry))
            else:
                backends.append(BackendConfig(**entry))
        cascades[role] = backends
    return CascadeRegistry(cascades=cascades)


# ---------------------------------------------------------------------------
# Prompt loader
# ---------------------------------------------------------------------------

class PromptLoader:
    """Loads role system prompts from config/prompts/ directory.

    Falls back to built-in defaults if the file doesn't exist.
    """

    def __init__(self, prompts_dir: Optional[Path] = None):
        if prompts_dir is None:
            prompts_dir = _default_config_dir() / "prompts"
        self.prompts_dir = prompts_dir

    def load(self, name: str, default: str = "") -> str:
        path = self.prompts_dir / name
        if path.exists():
            return path.read_text().strip()
        return default
