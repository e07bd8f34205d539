"""Configuration loading and validation."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_MAX_DELEGATION_DEPTH = 1
DEFAULT_AGENT_TIMEOUT_SECONDS = 15 * 60

# Friendly aliases -> provider model IDs. Unknown names pass through unchanged.
CLAUDE_MODEL_IDS: Dict[str, str] = {
    "sonnet": "claude-sonnet-4-5",
    "opus": "claude-opus-4-6",
    "claude-sonnet-4-5": "claude-sonnet-4-5",
    "claude-opus-4-6": "claude-opus-4-6",
}

CODEX_MODEL_IDS: Dict[str, str] = {
    "gpt-5.1": "gpt-5.1",
    "gpt-5.2": "gpt-5.2",
    "gpt-5.3-codex": "gpt-5.3-codex",
}

OLLAMA_MODEL_IDS: Dict[str, str] = {
    "llama3.2": "llama3.2",
    "llama3.1": "llama3.1",
    "qwen3": "qwen3",
    "qwen3-coder": "qwen3-coder:30b",
    "codellama": "codellama",
    "deepseek-coder-v2": "deepseek-coder-v2",
}


def resolve_model_id(provider: str, model: str) -> str:
    """Map a friendly model alias to the ID the provider expects."""
    table = {
        "anthropic": CLAUDE_MODEL_IDS,
        "openai": CODEX_MODEL_IDS,
        "ollama": OLLAMA_MODEL_IDS,
    }.get(provider, {})
    return table.get(model, model or "")


def expand_tilde(value: str) -> str:
    """Expand a leading ~ to the home directory."""
    if value == "~" or value.startswith("~/"):
        return str(Path.home()) + value[1:]
    return value


class AgentConfig(BaseModel):
    """A single agent: which provider/model runs it and where."""
    model_config = ConfigDict(extra="allow")

    name: str
    provider: Literal["anthropic", "openai", "ollama"] = "anthropic"
    model: str = ""
    working_directory: str = ""
    system_prompt: Optional[str] = None
    prompt_file: Optional[str] = None
    project_directory: Optional[str] = None
    shell_guard_enabled: bool = True
    max_delegation_depth: int = DEFAULT_MAX_DELEGATION_DEPTH
    fallback_providers: List[str] = Field(default_factory=list)

    @field_validator("max_delegation_depth")
    @classmethod
    def validate_depth(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"max_delegation_depth must be >= 0, got {v}")
        return v


class TeamConfig(BaseModel):
    """A named group of agents with a leader that receives @team messages."""
    name: str
    agents: List[str]
    leader_agent: str
    description: Optional[str] = None

    @model_validator(mode="after")
    def validate_leader(self) -> "TeamConfig":
        if self.leader_agent not in self.agents:
            raise ValueError(
                f"leader_agent '{self.leader_agent}' is not a member of team '{self.name}'"
            )
        return self


class ProjectConfig(BaseModel):
    """Shared project directory that agents can be switched onto."""
    name: str
    path: str


class WorkspaceConfig(BaseModel):
    path: str = "~/agent-relay-workspace"
    name: Optional[str] = None


class ChannelsConfig(BaseModel):
    """Enabled chat surfaces. Per-channel keys are opaque to the dispatcher."""
    model_config = ConfigDict(extra="allow")

    enabled: List[str] = Field(default_factory=list)


class ProviderModelConfig(BaseModel):
    model: Optional[str] = None


class ModelsConfig(BaseModel):
    """Legacy single-agent settings, used only when no agents are configured."""
    provider: Optional[Literal["anthropic", "openai", "ollama"]] = None
    anthropic: Optional[ProviderModelConfig] = None
    openai: Optional[ProviderModelConfig] = None


class ProvidersConfig(BaseModel):
    ollama_url: str = "http://localhost:11434"
    claude_executable: str = "claude"
    codex_executable: str = "codex"
    timeout_seconds: int = DEFAULT_AGENT_TIMEOUT_SECONDS

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {v}")
        return v

    def resolved_ollama_url(self) -> str:
        """OLLAMA_URL in the environment wins over the settings file."""
        return os.environ.get("OLLAMA_URL") or self.ollama_url


class SecurityConfig(BaseModel):
    """Security gate toggles. Environment scrubbing is always on."""
    input_sanitization_enabled: bool = True
    credential_scrubbing_enabled: bool = True
    shell_guard_enabled: bool = True


class QueueConfig(BaseModel):
    poll_interval: float = 1.0
    max_conversation_messages: int = 50
    long_response_threshold: int = 4000
    status_max_age_seconds: int = 20 * 60
    # Drop mentions whose target already answered in this conversation
    block_mention_cycles: bool = False

    @field_validator("poll_interval")
    @classmethod
    def validate_poll_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"poll_interval must be positive, got {v}")
        return v

    @field_validator("max_conversation_messages", "long_response_threshold")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"value must be >= 1, got {v}")
        return v


class Settings(BaseSettings):
    """Top-level relay settings."""
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    models: ModelsConfig = Field(default_factory=ModelsConfig)
    agents: Dict[str, AgentConfig] = Field(default_factory=dict)
    teams: Dict[str, TeamConfig] = Field(default_factory=dict)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    projects: Dict[str, ProjectConfig] = Field(default_factory=dict)
    active_project: Optional[str] = None
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    processing_status_enabled: bool = True

    class Config:
        env_prefix = "AGENT_RELAY_"
        extra = "allow"

    @property
    def workspace_path(self) -> Path:
        return Path(expand_tilde(self.workspace.path))

    def get_agents(self) -> Dict[str, AgentConfig]:
        """Configured agents, or a single synthesized 'default' agent."""
        if self.agents:
            return self.agents
        return {"default": self._default_agent_from_models()}

    def get_teams(self) -> Dict[str, TeamConfig]:
        return self.teams

    def get_active_project(self) -> Optional[ProjectConfig]:
        if not self.active_project:
            return None
        return self.projects.get(self.active_project)

    def _default_agent_from_models(self) -> AgentConfig:
        provider = self.models.provider
        if provider is None:
            provider = "openai" if self.models.openai and not self.models.anthropic else "anthropic"

        if provider == "openai":
            model = (self.models.openai.model if self.models.openai else None) or "gpt-5.3-codex"
        else:
            model = (self.models.anthropic.model if self.models.anthropic else None) or "sonnet"

        return AgentConfig(
            name="Default",
            provider=provider,
            model=model,
            working_directory=str(self.workspace_path / "default"),
        )


@dataclass(frozen=True)
class RelayPaths:
    """Filesystem layout under the relay home directory."""
    home: Path

    @classmethod
    def from_env(cls) -> "RelayPaths":
        env_home = os.environ.get("AGENT_RELAY_HOME")
        home = Path(env_home) if env_home else Path.home() / ".agent-relay"
        return cls(home.expanduser())

    @property
    def queue_dir(self) -> Path:
        return self.home / "queue"

    @property
    def incoming(self) -> Path:
        return self.queue_dir / "incoming"

    @property
    def processing(self) -> Path:
        return self.queue_dir / "processing"

    @property
    def outgoing(self) -> Path:
        return self.queue_dir / "outgoing"

    @property
    def status(self) -> Path:
        return self.queue_dir / "status"

    @property
    def chats(self) -> Path:
        return self.home / "chats"

    @property
    def files(self) -> Path:
        return self.home / "files"

    @property
    def logs(self) -> Path:
        return self.home / "logs"

    @property
    def events(self) -> Path:
        return self.home / "events"

    @property
    def settings_file(self) -> Path:
        yaml_file = self.home / "settings.yaml"
        json_file = self.home / "settings.json"
        if not yaml_file.exists() and json_file.exists():
            return json_file
        return yaml_file

    def ensure(self) -> None:
        """Create every directory the relay writes to."""
        for directory in (
            self.incoming, self.processing, self.outgoing, self.status,
            self.chats, self.files, self.logs, self.events,
        ):
            directory.mkdir(parents=True, exist_ok=True)


# Module-level mtime-based settings cache: path -> (parsed_settings, file_mtime)
_settings_cache: Dict[str, tuple] = {}


def _get_cached_or_load(resolved_path: Path, loader):
    """Return cached settings if file mtime unchanged, else reload."""
    key = str(resolved_path)
    try:
        current_mtime = resolved_path.stat().st_mtime
    except FileNotFoundError:
        _settings_cache.pop(key, None)
        return None

    cached = _settings_cache.get(key)
    if cached is not None:
        cached_result, cached_mtime = cached
        if cached_mtime == current_mtime:
            return cached_result

    result = loader(resolved_path)
    _settings_cache[key] = (result, current_mtime)
    return result


def _fallback_settings(settings_path: Path, problem: str) -> Settings:
    """Last good settings for this file, or defaults if it never loaded."""
    previous = _settings_cache.get(str(settings_path))
    if previous is not None:
        logger.error(f"Settings file {settings_path} {problem}. Keeping previous settings.")
        return previous[0]
    logger.error(f"Settings file {settings_path} {problem}. Using defaults.")
    return Settings()


def _load_settings_from_file(settings_path: Path) -> Settings:
    """Internal loader for the settings file (no caching).

    A file that does not parse or validate never raises; the running
    process keeps its last good settings.
    """
    try:
        with open(settings_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        return _fallback_settings(settings_path, f"is not valid YAML/JSON: {e}")

    if not isinstance(data, dict):
        return _fallback_settings(settings_path, "must contain a mapping")

    data = _expand_env_vars(data)
    try:
        return Settings(**data)
    except ValidationError as e:
        return _fallback_settings(settings_path, f"failed validation: {e}")


def load_settings(settings_path: Path) -> Settings:
    """Load relay settings from a YAML (or JSON) file.

    Uses mtime-based caching: returns cached settings if the file hasn't changed.
    """
    if not settings_path.exists():
        logger.warning(
            f"Settings file not found: {settings_path}. Using default configuration."
        )
        return Settings()

    result = _get_cached_or_load(settings_path.resolve(), _load_settings_from_file)
    return result if result is not None else Settings()


def clear_settings_cache() -> None:
    """Clear the module-level settings cache. Useful for tests."""
    _settings_cache.clear()


def _expand_env_vars(data: Any, _path: str = "") -> Any:
    """Recursively expand ${VAR} references in settings data."""
    if isinstance(data, dict):
        return {k: _expand_env_vars(v, f"{_path}.{k}" if _path else k) for k, v in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item, f"{_path}[{i}]") for i, item in enumerate(data)]
    elif isinstance(data, str) and data.startswith("${") and data.endswith("}"):
        env_var = data[2:-1]
        value = os.environ.get(env_var)
        if value is None:
            logger.warning(
                f"Environment variable '{env_var}' not set (referenced at settings path: {_path or 'root'}). "
                f"The literal string '{data}' will be used."
            )
            return data
        return value
    return data
