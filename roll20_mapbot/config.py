"""Application configuration loaded from environment variables and a JSON target file."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, model_validator

from .errors import ConfigError

load_dotenv()

# Paths
DATA_DIR = Path(os.getenv("DATA_DIR", Path(__file__).parent.parent / "data"))
CONFIG_PATH = Path(os.getenv("ROLL20_CONFIG", DATA_DIR / "config.json"))
EXPORT_DIR = DATA_DIR / "exports"
LOG_DIR = DATA_DIR / "logs"

# Session manager
SESSION_MANAGER_HOST = os.getenv("SESSION_MANAGER_HOST", "127.0.0.1")
SESSION_MANAGER_PORT = int(os.getenv("SESSION_MANAGER_PORT", "8024"))
SESSION_MANAGER_URL = f"http://{SESSION_MANAGER_HOST}:{SESSION_MANAGER_PORT}"

# Browser
BROWSER_HEADLESS = os.getenv("BROWSER_HEADLESS", "false").lower() == "true"
BROWSER_TIMEOUT = int(os.getenv("BROWSER_TIMEOUT", "30000"))

# Refresh cadence
MAP_REFRESH_SECONDS = float(os.getenv("MAP_REFRESH_SECONDS", "30"))
SHEET_REFRESH_SECONDS = float(os.getenv("SHEET_REFRESH_SECONDS", "300"))
RELAUNCH_INTERVAL_SECONDS = float(os.getenv("RELAUNCH_INTERVAL_SECONDS", "2400"))  # 40 minutes, 0 disables
RELAUNCH_ERROR_PAUSE_SECONDS = float(os.getenv("RELAUNCH_ERROR_PAUSE_SECONDS", "10"))

# Settle delays (Roll20 exposes no readiness signal for these steps)
LANDING_SETTLE_SECONDS = 2.0
LOGIN_SETTLE_SECONDS = 2.0
EDITOR_SETTLE_SECONDS = float(os.getenv("EDITOR_SETTLE_SECONDS", "5"))
JOURNAL_OPEN_SETTLE_SECONDS = 5.0
DIALOG_CLOSE_SETTLE_SECONDS = 1.0

# Poll timeouts
EDITOR_LOAD_TIMEOUT_SECONDS = float(os.getenv("EDITOR_LOAD_TIMEOUT_SECONDS", "60"))
MAP_EXPORT_TIMEOUT_SECONDS = float(os.getenv("MAP_EXPORT_TIMEOUT_SECONDS", "120"))
PRINT_TIMEOUT_SECONDS = float(os.getenv("PRINT_TIMEOUT_SECONDS", "30"))
POLL_INTERVAL_SECONDS = 0.5

# Map output
MAP_FORMAT = os.getenv("MAP_FORMAT", "JPEG")
MAP_QUALITY = int(os.getenv("MAP_QUALITY", "75"))


def ensure_dirs():
    """Create required data directories if they don't exist."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    EXPORT_DIR.mkdir(parents=True, exist_ok=True)
    LOG_DIR.mkdir(parents=True, exist_ok=True)


# ── Target configuration ─────────────────────────────────────────────────────


class TargetConfig(BaseModel):
    """One Roll20 account/game pair and the chat channels routed to it."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    email: str = Field(default="jdoe123@example.com", alias="roll20_email")
    password: SecretStr = Field(default=SecretStr("password"), alias="roll20_password")
    game: str = Field(default="My Game", alias="roll20_game")
    target_channels: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _default_name(self) -> TargetConfig:
        if not self.name:
            self.name = self.game
        return self


class AppConfig(BaseModel):
    """Top-level configuration file contents."""

    model_config = ConfigDict(populate_by_name=True)

    targets: list[TargetConfig] = Field(default_factory=list, alias="roll20_instances")
    standard_resolution: int = Field(default=1000, gt=0)
    hd_resolution: int = Field(default=2000, gt=0)
    viewport_width: int = Field(default=1920, gt=0)
    viewport_height: int = Field(default=1080, gt=0)

    def channel_routes(self) -> dict[str, str]:
        """Map each inbound channel id to the name of the target it is routed to.

        Raises:
            ConfigError: a target name is used twice, or a channel is routed
                to more than one target.
        """
        seen_targets: set[str] = set()
        routes: dict[str, str] = {}
        for target in self.targets:
            if target.name in seen_targets:
                raise ConfigError(f"target name {target.name!r} is configured more than once")
            seen_targets.add(target.name)
            for channel in target.target_channels:
                if channel in routes:
                    raise ConfigError(
                        f"channel {channel} is tracking multiple roll20 instances "
                        f"({routes[channel]!r} and {target.name!r})"
                    )
                routes[channel] = target.name
        return routes


def default_config() -> AppConfig:
    """Configuration with one placeholder target, as printed by ``--spec``."""
    return AppConfig(targets=[TargetConfig()])


def config_template() -> str:
    """The default configuration as a ready-to-edit JSON file body.

    Passwords are written in clear so the output loads back as-is.
    """
    config = default_config()
    data = config.model_dump(mode="json", by_alias=True)
    for dumped, target in zip(data["roll20_instances"], config.targets):
        dumped["roll20_password"] = target.password.get_secret_value()
    return json.dumps(data, indent=2)


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Read and validate the JSON target configuration.

    Raises:
        ConfigError: the file is missing, not JSON, fails validation, or
            violates the channel routing invariant.
    """
    config_path = Path(path) if path is not None else CONFIG_PATH
    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError(f"config file not found: {config_path}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"config file {config_path} is not valid JSON: {e}") from e

    try:
        config = AppConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"invalid config in {config_path}: {e}") from e

    config.channel_routes()
    return config
