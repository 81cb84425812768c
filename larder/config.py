"""
Configuration management for larder stores.

The configuration is stored as a TOML file in the store directory.
It names the application (used to prefix collection keys), the storage
backend, and the generative AI provider with its parameters.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

# tomli_w for writing TOML (tomllib is read-only)
try:
    import tomli_w
except ImportError:
    tomli_w = None  # type: ignore


CONFIG_FILENAME = "larder.toml"
CONFIG_VERSION = 1

DEFAULT_APP = "larder"
DEFAULT_MAX_ATTACHMENT_BYTES = 10 * 1024 * 1024


@dataclass
class ProviderConfig:
    """Configuration for a single provider."""
    name: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    app: str = DEFAULT_APP
    backend: str = "local"

    # Generative backend; None means AI features are disabled
    ai: Optional[ProviderConfig] = None

    max_attachment_bytes: int = DEFAULT_MAX_ATTACHMENT_BYTES

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def get_default_store_path() -> Path:
    """
    Resolve the store directory.

    Priority:
    1. LARDER_STORE_PATH environment variable
    2. ~/.larder
    """
    env_path = os.environ.get("LARDER_STORE_PATH")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return Path.home() / ".larder"


def detect_default_providers() -> dict[str, ProviderConfig]:
    """
    Detect the best default AI provider for the current environment.

    Priority:
    1. Anthropic (if ANTHROPIC_API_KEY available)
    2. OpenAI (if LARDER_OPENAI_API_KEY or OPENAI_API_KEY available)
    3. Hosted endpoint (if LARDER_AI_URL is set)
    4. Fallback: none (AI features report an error)
    """
    providers = {}

    has_anthropic_key = bool(os.environ.get("ANTHROPIC_API_KEY"))
    has_openai_key = bool(
        os.environ.get("LARDER_OPENAI_API_KEY") or
        os.environ.get("OPENAI_API_KEY")
    )
    ai_url = os.environ.get("LARDER_AI_URL")

    if has_anthropic_key:
        providers["ai"] = ProviderConfig("anthropic")
    elif has_openai_key:
        providers["ai"] = ProviderConfig("openai")
    elif ai_url:
        providers["ai"] = ProviderConfig("http", {"api_url": ai_url})
    else:
        providers["ai"] = ProviderConfig("none")

    return providers


def create_default_config(store_path: Path) -> StoreConfig:
    """Create a new config with auto-detected defaults."""
    providers = detect_default_providers()

    return StoreConfig(
        path=store_path,
        ai=providers["ai"],
    )


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid config {config_path}: {e}") from e

    store = data.get("store", {})
    version = store.get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    def parse_provider(section: Optional[dict]) -> Optional[ProviderConfig]:
        if not section or not section.get("name"):
            return None
        return ProviderConfig(
            name=section["name"],
            params={k: v for k, v in section.items() if k != "name"},
        )

    limits = data.get("limits", {})

    return StoreConfig(
        path=store_path,
        version=version,
        created=store.get("created", ""),
        app=store.get("app", DEFAULT_APP),
        backend=store.get("backend", "local"),
        ai=parse_provider(data.get("ai")),
        max_attachment_bytes=int(
            limits.get("max_attachment_bytes", DEFAULT_MAX_ATTACHMENT_BYTES)
        ),
    )


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    if tomli_w is None:
        raise RuntimeError("tomli_w is required to save config. Install with: pip install tomli-w")

    config.path.mkdir(parents=True, exist_ok=True)

    def provider_to_dict(p: ProviderConfig) -> dict:
        d = {"name": p.name}
        d.update(p.params)
        return d

    data: dict[str, Any] = {
        "store": {
            "version": config.version,
            "created": config.created,
            "app": config.app,
            "backend": config.backend,
        },
        "limits": {
            "max_attachment_bytes": config.max_attachment_bytes,
        },
    }
    if config.ai is not None:
        data["ai"] = provider_to_dict(config.ai)

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    else:
        config = create_default_config(store_path)
        save_config(config)
        return config
