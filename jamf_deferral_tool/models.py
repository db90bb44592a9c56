"""
Data models for Jamf Deferral Tool.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional


class DeferralScope(str, Enum):
    USER = "user"
    DEVICE = "device"


class ResetMode(str, Enum):
    ON_UPDATE = "onUpdate"
    NEVER = "never"


class ComplianceStatus(str, Enum):
    COMPLIANT = "compliant"
    NON_COMPLIANT = "non_compliant"


class PromptOutcome(str, Enum):
    CONTINUE = "continue"
    DEFER = "defer"


@dataclass(frozen=True)
class RecordKey:
    """Identifies the deferral record for one (subject, application) pair."""
    org: str
    shortname: str
    scope: DeferralScope
    user: Optional[str] = None

    @property
    def domain(self) -> str:
        return f"com.{self.org}.{self.shortname}.deferrals"

    def plist_path(self, device_preferences_dir: Path, users_dir: Path) -> Path:
        if self.scope is DeferralScope.USER and self.user:
            return users_dir / self.user / "Library" / "Preferences" / f"{self.domain}.plist"
        return device_preferences_dir / f"{self.domain}.plist"


@dataclass(frozen=True)
class DeferralRecord:
    """
    Persisted deferral state.

    ``remaining`` is None once the cycle has been closed by an install.
    """
    remaining: Optional[int]
    max: int
    required_version_tag: Optional[str] = None
    required_version: Optional[str] = None  # display only
    last_deferral_epoch: Optional[int] = None

    @property
    def is_closed(self) -> bool:
        return self.remaining is None


@dataclass
class SystemInfo:
    """Help desk summary of the local Mac."""
    serial: Optional[str] = None
    model: Optional[str] = None
    os: Optional[str] = None
    uptime: Optional[str] = None
    ip: Optional[str] = None
    jamf_enrolled: Optional[str] = None
    jamf_server: Optional[str] = None
    jamf_last_activity: Optional[str] = None
