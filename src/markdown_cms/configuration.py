"""
Process configuration for the markdown API server.

Settings are layered with OmegaConf, each layer overriding the previous one:

1. Defaults declared on the ``CMSConfig`` dataclass
2. An optional YAML file (``MARKDOWN_CMS_CONFIG`` or ``./config/config.yaml``)
3. Environment variables, after loading a ``.env`` file if one is present
4. Programmatic overrides passed to ``load_settings``

The resulting ``CMSConfig`` is treated as immutable for the lifetime of the
process.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv
from omegaconf import OmegaConf

load_dotenv()

WEBHOOK_SERVICES = ("netlify", "vercel", "github", "custom")

CONFIG_PATH_ENV = "MARKDOWN_CMS_CONFIG"
DEFAULT_CONFIG_PATH = Path("config/config.yaml")

# Environment variable -> dotted config key
ENV_OVERRIDES: Dict[str, str] = {
    "HOST": "host",
    "PORT": "port",
    "MARKDOWN_DIR": "markdown_dir",
    "LOG_LEVEL": "log_level",
    "NETLIFY_BUILD_HOOK_URL": "webhooks.netlify",
    "VERCEL_BUILD_HOOK_URL": "webhooks.vercel",
    "GITHUB_BUILD_HOOK_URL": "webhooks.github",
    "CUSTOM_BUILD_HOOK_URL": "webhooks.custom",
    "GITHUB_TOKEN": "github_token",
    "AUTO_COMMIT": "git.auto_commit",
    "GIT_REMOTE": "git.remote",
    "WATCH_ENABLED": "watcher.enabled",
    "BUILD_DEBOUNCE_SECONDS": "watcher.debounce_seconds",
}


@dataclass
class WebhookConfig:
    netlify: Optional[str] = None
    vercel: Optional[str] = None
    github: Optional[str] = None
    custom: Optional[str] = None


@dataclass
class WatcherConfig:
    enabled: bool = True
    # Trailing-edge quiet window before a build is dispatched
    debounce_seconds: float = 2.0
    # A file must keep the same size for this long before its event is emitted
    stability_threshold_ms: int = 1000
    poll_interval_ms: int = 100


@dataclass
class GitConfig:
    auto_commit: bool = False
    remote: str = "origin"


@dataclass
class CMSConfig:
    host: str = "0.0.0.0"
    port: int = 3001
    markdown_dir: str = "markdown-files"
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    github_token: Optional[str] = None
    webhook_timeout_seconds: float = 10.0
    webhooks: WebhookConfig = field(default_factory=WebhookConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    git: GitConfig = field(default_factory=GitConfig)

    @property
    def markdown_path(self) -> Path:
        return Path(self.markdown_dir).expanduser().resolve()

    def configured_webhooks(self) -> Dict[str, str]:
        """Service name -> URL for every webhook with a non-empty URL, in declaration order."""
        return {service: url for service in WEBHOOK_SERVICES if (url := getattr(self.webhooks, service))}


def _nest(dotted: Mapping[str, Any]) -> Dict[str, Any]:
    nested: Dict[str, Any] = {}
    for key, value in dotted.items():
        *parents, leaf = key.split(".")
        node = nested
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value
    return nested


def _env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    return {key: environ[name] for name, key in ENV_OVERRIDES.items() if environ.get(name)}


def _config_file(environ: Mapping[str, str]) -> Optional[Path]:
    explicit = environ.get(CONFIG_PATH_ENV)
    if explicit:
        path = Path(explicit)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found at {path}")
        return path
    return DEFAULT_CONFIG_PATH if DEFAULT_CONFIG_PATH.exists() else None


def load_settings(
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> CMSConfig:
    """
    Build a ``CMSConfig`` from defaults, YAML file, environment and overrides.

    Args:
        overrides: Dotted keys (``"webhooks.netlify"``) merged last
        environ: Environment mapping to read instead of ``os.environ``

    Returns:
        A fully resolved ``CMSConfig`` instance

    Raises:
        FileNotFoundError: If ``MARKDOWN_CMS_CONFIG`` names a missing file
        omegaconf.errors.ValidationError: If a value cannot be converted to its declared type
    """
    environ = os.environ if environ is None else environ
    layers = [OmegaConf.structured(CMSConfig)]

    config_file = _config_file(environ)
    if config_file is not None:
        layers.append(OmegaConf.load(config_file))

    layers.append(OmegaConf.create(_nest(_env_overrides(environ))))
    if overrides:
        layers.append(OmegaConf.create(_nest(overrides)))

    merged = OmegaConf.merge(*layers)
    return OmegaConf.to_object(merged)  # type: ignore[return-value]


@lru_cache(maxsize=1)
def get_settings() -> CMSConfig:
    return load_settings()
