"""Configuration: profiles and defaults stored in ~/.zepctl/config.yaml.

The loaded Config is an ordinary object handed to each command. Nothing is
cached at module level: call ``Config.reload()`` to get a fresh copy after
the file changes.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, PrivateAttr, ValidationError

from .errors import ConfigError

DEFAULT_API_URL = "https://api.getzep.com/api/v2"
OUTPUT_FORMATS = ("table", "json", "yaml", "wide")

# Environment overrides, highest precedence after command-line flags
ENV_CONFIG = "ZEPCTL_CONFIG"
ENV_API_KEY = "ZEP_API_KEY"
ENV_API_URL = "ZEP_API_URL"
ENV_PROFILE = "ZEP_PROFILE"
ENV_OUTPUT = "ZEP_OUTPUT"


def default_config_path() -> Path:
    env = os.environ.get(ENV_CONFIG)
    if env:
        return Path(env).expanduser()
    return Path.home() / ".zepctl" / "config.yaml"


class Profile(BaseModel):
    """A named API endpoint. Keys are never written here; a profile may name
    the environment variable that holds its key instead."""

    name: str
    api_url: str = ""
    api_key_env: str = ""


class Defaults(BaseModel):
    output: str = "table"
    page_size: int = 50


class Config(BaseModel):
    current_profile: str = ""
    profiles: list[Profile] = Field(default_factory=list)
    defaults: Defaults = Field(default_factory=Defaults)

    _path: Path | None = PrivateAttr(default=None)

    @property
    def path(self) -> Path:
        return self._path or default_config_path()

    # ── profiles ──────────────────────────────────────────────────────

    def get_profile(self, name: str) -> Profile | None:
        for p in self.profiles:
            if p.name == name:
                return p
        return None

    def add_profile(self, profile: Profile) -> None:
        """Add a profile, replacing any existing one with the same name.

        The first profile added becomes current.
        """
        self.profiles = [p for p in self.profiles if p.name != profile.name] + [profile]
        if not self.current_profile:
            self.current_profile = profile.name

    def delete_profile(self, name: str) -> None:
        if self.get_profile(name) is None:
            raise ConfigError(f"profile {name!r} not found")
        self.profiles = [p for p in self.profiles if p.name != name]
        if self.current_profile == name:
            self.current_profile = ""

    def use_profile(self, name: str) -> None:
        if self.get_profile(name) is None:
            raise ConfigError(f"profile {name!r} not found")
        self.current_profile = name

    def active_profile(self, override: str | None = None) -> Profile | None:
        """Profile selected by flag, then $ZEP_PROFILE, then current_profile."""
        name = override or os.environ.get(ENV_PROFILE) or self.current_profile
        if not name:
            return None
        profile = self.get_profile(name)
        if profile is None and (override or os.environ.get(ENV_PROFILE)):
            raise ConfigError(f"profile {name!r} not found")
        return profile

    # ── persistence ───────────────────────────────────────────────────

    def save(self, path: str | Path | None = None) -> Path:
        p = Path(path).expanduser() if path else self.path
        p.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        data = self.model_dump(exclude_defaults=False)
        p.write_text(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))
        p.chmod(0o600)
        self._path = p
        return p

    def reload(self) -> "Config":
        """Re-read the file this config came from. Returns a new instance."""
        return load_config(self.path)


def load_config(config_path: str | Path | None = None) -> Config:
    """Load config from ``config_path`` or the default location.

    A missing file yields defaults (table output, page size 50).
    """
    p = Path(config_path).expanduser() if config_path else default_config_path()
    data: dict[str, Any] = {}
    if p.exists():
        try:
            data = yaml.safe_load(p.read_text()) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"reading config file {p}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"config file {p} must contain a mapping")
    try:
        cfg = Config(**data)
    except ValidationError as e:
        raise ConfigError(f"parsing config file {p}: {e}") from e
    cfg._path = p
    return cfg


@dataclass
class Settings:
    """Resolved connection and output settings for one invocation."""

    api_key: str
    api_url: str
    output: str
    profile: str = ""


def resolve_settings(cfg: Config, *, api_key: str | None = None,
                     api_url: str | None = None, profile: str | None = None,
                     output: str | None = None, require_key: bool = True) -> Settings:
    """Merge flags, environment and profile into Settings.

    Precedence: flag > environment > profile > built-in default.
    """
    prof = cfg.active_profile(profile)

    key = api_key or os.environ.get(ENV_API_KEY, "")
    if not key and prof and prof.api_key_env:
        key = os.environ.get(prof.api_key_env, "")
    if not key and require_key:
        raise ConfigError(
            f"no API key configured; set {ENV_API_KEY}, pass --api-key, "
            "or give the profile an api_key_env"
        )

    url = api_url or os.environ.get(ENV_API_URL, "")
    if not url and prof and prof.api_url:
        url = prof.api_url

    fmt = output or os.environ.get(ENV_OUTPUT, "") or cfg.defaults.output
    if fmt not in OUTPUT_FORMATS:
        raise ConfigError(f"unknown output format {fmt!r}; use one of {', '.join(OUTPUT_FORMATS)}")

    return Settings(api_key=key, api_url=url or DEFAULT_API_URL, output=fmt,
                    profile=prof.name if prof else "")
