# KanbanAI configuration
# Override defaults via kanbanai.yaml ($KANBAN_CONFIG) or environment variables.

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, Optional

import yaml

CONFIG_PATH = Path("kanbanai.yaml")

DEFAULT_GATEWAY_URL = "https://ai.gateway.lovable.dev/v1/chat/completions"


class ConfigError(Exception):
    """Raised when configuration is invalid or incomplete."""
    pass


@dataclass
class Config:
    """Runtime configuration shared by the server and the chat client."""

    # Storage
    db_path: str = "~/.local/share/kanbanai/kanban.db"

    # Upstream LLM gateway (used by the relay)
    gateway_url: str = DEFAULT_GATEWAY_URL
    gateway_model: str = "google/gemini-3-flash-preview"
    gateway_api_key_env: str = "KANBAN_GATEWAY_API_KEY"
    gateway_timeout: float = 60.0

    # Relay endpoint (used by the chat client)
    relay_url: str = "http://127.0.0.1:3000/functions/v1/kanban-chat"
    relay_timeout: float = 90.0

    # Bearer token -> user id
    api_tokens: Dict[str, str] = field(default_factory=dict)

    log_level: str = "INFO"

    @property
    def gateway_api_key(self) -> Optional[str]:
        return os.environ.get(self.gateway_api_key_env) or None

    def require_gateway_api_key(self) -> str:
        key = self.gateway_api_key
        if not key:
            raise ConfigError(f"{self.gateway_api_key_env} is not configured")
        return key

    def resolve_paths(self):
        """Apply env overrides and expand ~."""
        env_db = os.environ.get("KANBAN_DB")
        if env_db:
            self.db_path = env_db
        self.db_path = str(Path(self.db_path).expanduser())

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load config from YAML file, falling back to defaults."""
        cfg_path = Path(path or os.environ.get("KANBAN_CONFIG") or CONFIG_PATH)
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Cannot parse {cfg_path}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigError(f"{cfg_path} must contain a mapping")
            known = {f.name for f in fields(cls)}
            cfg = cls(**{k: v for k, v in data.items() if k in known})
        else:
            cfg = cls()
        cfg.api_tokens = {str(k): str(v) for k, v in (cfg.api_tokens or {}).items()}
        cfg.resolve_paths()
        return cfg
