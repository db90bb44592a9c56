"""
Configuration loading and validation.

Site-wide settings (organization, storage roots, SwiftDialog/Jamf locations,
deferral scope and reset behaviour) come from an optional YAML file and the
environment. Per-policy settings (title, app path, required version, ...) come
from the command line or from Jamf script parameters and are validated into a
``PromptSettings``.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

from .compliance import VersionUnreadable, parse_version
from .models import DeferralScope, ResetMode

DEFAULT_CONFIG_PATH = Path.home() / ".jamf_deferral_tool.yml"


class ConfigError(Exception):
    """Raised when configuration cannot be loaded or is invalid."""


@dataclass
class Config:
    org: str = "test"
    software_portal: str = "Self Service"
    deferral_scope: DeferralScope = DeferralScope.USER
    reset_mode: ResetMode = ResetMode.ON_UPDATE
    identity: str = "title"  # "title" or "bundle_id"
    wait_time: int = 60  # Seconds the cosmetic progress dialog runs
    dialog_binary: Path = Path("/usr/local/bin/dialog")
    dialog_command_file: Path = Path("/var/tmp/dialog.log")
    dialog_height: int = 430
    dialog_icon_size: int = 120
    dialog_title_colour: str = "#00a4c7"
    jamf_binary: Path = Path("/usr/local/bin/jamf")
    jamf_log_path: Path = Path("/var/log/jamf.log")
    device_preferences_dir: Path = Path("/Library/Preferences")
    users_dir: Path = Path("/Users")
    locking: bool = True
    teams_webhook_url: Optional[str] = None
    config_path: Optional[Path] = None


@dataclass
class PromptSettings:
    """Validated per-policy inputs for one update prompt."""
    title: str
    app_path: Path
    required_version: str
    max_deferrals: int
    policy_trigger: str
    additional_info: str = ""
    wait_time: Optional[int] = None
    shortname_override: Optional[str] = None


def _section(file_data: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = file_data.get(name, {})
    return value if isinstance(value, dict) else {}


def parse_non_negative_int(value: Any, name: str) -> int:
    """
    Parse a non-negative integer parameter.

    Examples:
        >>> parse_non_negative_int("3", "max deferrals")
        3
        >>> parse_non_negative_int("three", "max deferrals")
        Traceback (most recent call last):
        ...
        ConfigError: max deferrals must be a non-negative integer. Got: three
    """
    text = str(value).strip()
    if not re.fullmatch(r"[0-9]+", text):
        raise ConfigError(f"{name} must be a non-negative integer. Got: {value}")
    return int(text)


def parse_scope(value: Any) -> DeferralScope:
    try:
        return DeferralScope(str(value).strip().lower())
    except ValueError as exc:
        raise ConfigError(f"Deferral scope must be 'user' or 'device'. Got: {value}") from exc


def parse_reset_mode(value: Any) -> ResetMode:
    text = str(value).strip()
    for mode in ResetMode:
        if mode.value.lower() == text.lower():
            return mode
    raise ConfigError(f"Reset mode must be 'onUpdate' or 'never'. Got: {value}")


def load_config(
    config_file: Optional[str] = None,
    org: Optional[str] = None,
    deferral_scope: Optional[str] = None,
    reset_mode: Optional[str] = None,
) -> Config:
    """
    Load configuration from CLI, environment, and optional YAML file.

    Precedence: CLI > environment > config file > defaults.
    """
    env_config = os.environ.get("JAMF_DEFERRAL_TOOL_CONFIG")
    config_path = Path(config_file or env_config or DEFAULT_CONFIG_PATH).expanduser()

    file_data: Dict[str, Any] = {}
    if config_path.exists():
        try:
            with config_path.open("r", encoding="utf-8") as handle:
                loaded = yaml.safe_load(handle) or {}
                if not isinstance(loaded, dict):
                    raise ConfigError("Configuration file must contain a mapping.")
                file_data = loaded
        except OSError as exc:
            raise ConfigError(f"Failed to read config file {config_path}") from exc
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in config file {config_path}") from exc

    defaults = Config()
    dialog_config = _section(file_data, "dialog")
    jamf_config = _section(file_data, "jamf")
    storage_config = _section(file_data, "storage")

    org_value = org or os.environ.get("JAMF_DEFERRAL_TOOL_ORG") or file_data.get("org") or defaults.org
    scope_value = deferral_scope or os.environ.get("JAMF_DEFERRAL_TOOL_SCOPE") or file_data.get("deferral_scope")
    reset_value = reset_mode or file_data.get("reset_mode")

    identity = str(file_data.get("identity", defaults.identity)).strip().lower()
    if identity not in ("title", "bundle_id"):
        raise ConfigError(f"identity must be 'title' or 'bundle_id'. Got: {identity}")

    return Config(
        org=str(org_value),
        software_portal=str(file_data.get("software_portal", defaults.software_portal)),
        deferral_scope=parse_scope(scope_value) if scope_value else defaults.deferral_scope,
        reset_mode=parse_reset_mode(reset_value) if reset_value else defaults.reset_mode,
        identity=identity,
        wait_time=parse_non_negative_int(file_data.get("wait_time", defaults.wait_time), "wait_time"),
        dialog_binary=Path(dialog_config.get("binary", defaults.dialog_binary)),
        dialog_command_file=Path(dialog_config.get("command_file", defaults.dialog_command_file)),
        dialog_height=parse_non_negative_int(dialog_config.get("height", defaults.dialog_height), "dialog.height"),
        dialog_icon_size=parse_non_negative_int(dialog_config.get("icon_size", defaults.dialog_icon_size), "dialog.icon_size"),
        dialog_title_colour=str(dialog_config.get("title_colour", defaults.dialog_title_colour)),
        jamf_binary=Path(jamf_config.get("binary", defaults.jamf_binary)),
        jamf_log_path=Path(jamf_config.get("log_path", defaults.jamf_log_path)),
        device_preferences_dir=Path(storage_config.get("device_preferences_dir", defaults.device_preferences_dir)).expanduser(),
        users_dir=Path(storage_config.get("users_dir", defaults.users_dir)).expanduser(),
        locking=bool(storage_config.get("locking", defaults.locking)),
        teams_webhook_url=file_data.get("teams_webhook_url"),
        config_path=config_path if config_path.exists() else None,
    )


def build_prompt_settings(
    title: Optional[str],
    app_path: Optional[str],
    required_version: Optional[str],
    max_deferrals: Optional[str],
    policy_trigger: Optional[str],
    additional_info: Optional[str] = None,
    wait_time: Optional[str] = None,
    shortname_override: Optional[str] = None,
) -> PromptSettings:
    """
    Validate raw update-prompt inputs.

    Raises:
        ConfigError: when a required value is missing, or a number or the
            required version is malformed
    """
    required = {
        "title": title,
        "app path": app_path,
        "required version": required_version,
        "max deferrals": max_deferrals,
        "policy trigger": policy_trigger,
    }
    missing = [name for name, value in required.items() if value is None or not str(value).strip()]
    if missing:
        raise ConfigError(f"Missing required parameters: {', '.join(missing)}")
    try:
        parse_version(required_version)
    except VersionUnreadable as exc:
        raise ConfigError(f"required version must be dot-separated integers. Got: {required_version}") from exc

    return PromptSettings(
        title=str(title).strip(),
        app_path=Path(str(app_path).strip()),
        required_version=str(required_version).strip(),
        max_deferrals=parse_non_negative_int(max_deferrals, "max deferrals"),
        policy_trigger=str(policy_trigger).strip(),
        additional_info=additional_info or "",
        wait_time=parse_non_negative_int(wait_time, "wait time") if wait_time not in (None, "") else None,
        shortname_override=(shortname_override or "").strip() or None,
    )


def parse_jamf_parameters(args: Sequence[str]) -> PromptSettings:
    """
    Build prompt settings from Jamf script positional parameters.

    Jamf passes $1 (mount point), $2 (computer name) and $3 (username) before
    the policy-defined parameters:

        $4  title              $8  additional info
        $5  app path           $9  policy trigger
        $6  required version   $10 wait time (seconds)
        $7  max deferrals      $11 shortname override

    Examples:
        >>> settings = parse_jamf_parameters(["/", "mac01", "jdoe", "Google Chrome",
        ...     "/Applications/Google Chrome.app", "126.0.6478.127", "3", "", "install_chrome"])
        >>> settings.max_deferrals
        3
    """
    padded: List[str] = list(args) + [""] * max(0, 11 - len(args))
    return build_prompt_settings(
        title=padded[3],
        app_path=padded[4],
        required_version=padded[5],
        max_deferrals=padded[6],
        additional_info=padded[7],
        policy_trigger=padded[8],
        wait_time=padded[9],
        shortname_override=padded[10],
    )
