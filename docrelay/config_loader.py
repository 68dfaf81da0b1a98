"""
Configuration loader for DOCRELAY.
Merges built-in defaults with an optional override file and
environment variables. Secrets are read from the environment only.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


class ConfigError(Exception):
    pass


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class RoutingConfig(BaseModel):
    editor: str = "anthropic/claude-sonnet-4-6"
    classifier: str = "anthropic/claude-sonnet-4-6"


class LimitsConfig(BaseModel):
    max_tool_rounds: int = Field(default=10, ge=1)
    editor_max_tokens: int = 2048
    classifier_max_tokens: int = 1024
    proposal_ttl_seconds: int = Field(default=300, ge=1)
    page_size: int = Field(default=100, ge=1, le=100)
    batch_workers: int = Field(default=8, ge=1)


class NotionConfig(BaseModel):
    api_base: str = "https://api.notion.com/v1"
    version: str = "2022-06-28"
    page_id: str = ""


class GitHubConfig(BaseModel):
    api_base: str = "https://api.github.com"
    org: str = "marutamura"


class LineConfig(BaseModel):
    api_base: str = "https://api.line.me/v2/bot"


class HttpConfig(BaseModel):
    timeout_seconds: float = 30.0


class AuditConfig(BaseModel):
    log_path: str | None = None


DEFAULT_TARGETS: dict[str, str] = {
    "マルタギルド": "marta-guild",
    "満願寺御朱印帳": "manganji-stamp",
    "モノハブ": "monohub",
    "推し活": "oshi-katsu",
    "目標達成部": "mokuhyo-tassei-bu",
    "あちらさまからです": "achirasama",
    "ハッピー鑑定士": "happykantei",
    "満願寺どっち": "manganji-stamp",
}

DEFAULT_AFFIRMATIVE = ["はい", "yes", "そうして", "お願い", "作って", "よろしく", "いいよ", "ええよ"]
DEFAULT_NEGATIVE = ["いいえ", "no", "やめて", "キャンセル", "違う", "ちがう"]


class RepliesConfig(BaseModel):
    affirmative: list[str] = Field(default_factory=lambda: list(DEFAULT_AFFIRMATIVE))
    negative: list[str] = Field(default_factory=lambda: list(DEFAULT_NEGATIVE))


class RelayConfig(BaseModel):
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    notion: NotionConfig = Field(default_factory=NotionConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    line: LineConfig = Field(default_factory=LineConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    targets: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_TARGETS))
    replies: RepliesConfig = Field(default_factory=RepliesConfig)


class Secrets(BaseModel):
    """Credentials for the external services. Never loaded from YAML."""
    line_channel_access_token: str = ""
    line_channel_secret: str = ""
    notion_token: str = ""
    github_token: str = ""

    @classmethod
    def from_env(cls) -> "Secrets":
        return cls(
            line_channel_access_token=os.environ.get("LINE_CHANNEL_ACCESS_TOKEN", ""),
            line_channel_secret=os.environ.get("LINE_CHANNEL_SECRET", ""),
            notion_token=os.environ.get("NOTION_TOKEN", ""),
            github_token=os.environ.get("GITHUB_TOKEN", ""),
        )

    def require(self, *names: str) -> None:
        """Raise ConfigError if any of the named secrets is empty."""
        missing = [name for name in names if not getattr(self, name)]
        if missing:
            raise ConfigError(
                "Missing required secrets: " + ", ".join(name.upper() for name in missing)
            )


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"

# env var -> (section, key)
_ENV_OVERRIDES = {
    "NOTION_PAGE_ID": ("notion", "page_id"),
    "GITHUB_ORG": ("github", "org"),
    "DOCRELAY_EDITOR_MODEL": ("routing", "editor"),
    "DOCRELAY_CLASSIFIER_MODEL": ("routing", "classifier"),
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Path | None = None) -> RelayConfig:
    """
    Load config by merging:
      1. Built-in defaults (docrelay/config.yaml)
      2. Override file (argument, else $DOCRELAY_CONFIG)
      3. Environment variable overrides
    """
    # 1. Built-in defaults
    with open(_DEFAULT_CONFIG_PATH, "r", encoding="utf-8") as f:
        base: dict[str, Any] = yaml.safe_load(f) or {}

    # 2. Override file
    if config_path is None and os.environ.get("DOCRELAY_CONFIG"):
        config_path = Path(os.environ["DOCRELAY_CONFIG"])
    if config_path is not None:
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
        with open(config_path, "r", encoding="utf-8") as f:
            overrides: dict[str, Any] = yaml.safe_load(f) or {}
        base = _deep_merge(base, overrides)

    # 3. Env overrides
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            base.setdefault(section, {})[key] = value

    return RelayConfig(**base)


def validate_api_keys() -> dict[str, bool]:
    """Check which API keys are available."""
    return {
        "ANTHROPIC_API_KEY":         bool(os.environ.get("ANTHROPIC_API_KEY")),
        "LINE_CHANNEL_ACCESS_TOKEN": bool(os.environ.get("LINE_CHANNEL_ACCESS_TOKEN")),
        "LINE_CHANNEL_SECRET":       bool(os.environ.get("LINE_CHANNEL_SECRET")),
        "NOTION_TOKEN":              bool(os.environ.get("NOTION_TOKEN")),
        "GITHUB_TOKEN":              bool(os.environ.get("GITHUB_TOKEN")),
    }
