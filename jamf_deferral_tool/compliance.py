"""
Version compliance checks for installed application bundles.
"""

from __future__ import annotations

import logging
import plistlib
import re
from itertools import zip_longest
from pathlib import Path
from typing import Optional, Tuple
from xml.parsers.expat import ExpatError

from .models import ComplianceStatus

_VERSION_RE = re.compile(r"\d+(?:\.\d+)*")


class VersionUnreadable(Exception):
    """Raised when a version string or the app metadata holding it cannot be read."""


def parse_version(version_str: Optional[str]) -> Tuple[int, ...]:
    """
    Parse a dot-delimited version string into a tuple of integers.

    Args:
        version_str: Version string like "14.7.1" or "126.0.6478.127"

    Returns:
        Tuple of integers representing version components

    Raises:
        VersionUnreadable: if the string is empty or not a dot-integer sequence

    Examples:
        >>> parse_version("14.7.1")
        (14, 7, 1)
        >>> parse_version("126.0.6478.127")
        (126, 0, 6478, 127)
    """
    if version_str is None:
        raise VersionUnreadable("Version is missing")
    text = str(version_str).strip()
    if not _VERSION_RE.fullmatch(text):
        raise VersionUnreadable(f"Unreadable version string: {version_str!r}")
    return tuple(int(part) for part in text.split("."))


def compare_versions(left: str, right: str) -> int:
    """
    Compare two version strings component by component.

    Missing trailing components count as 0, so "7.0" == "7.0.0.0".

    Returns:
        -1, 0 or 1 as left is lower than, equal to or higher than right

    Examples:
        >>> compare_versions("7.0", "7.0.2.0")
        -1
        >>> compare_versions("7.0.0.0", "7.0")
        0
    """
    for a, b in zip_longest(parse_version(left), parse_version(right), fillvalue=0):
        if a != b:
            return 1 if a > b else -1
    return 0


def evaluate(installed: str, required: str) -> ComplianceStatus:
    """Return COMPLIANT iff the installed version is at least the required one."""
    if compare_versions(installed, required) >= 0:
        return ComplianceStatus.COMPLIANT
    return ComplianceStatus.NON_COMPLIANT


def _read_info_plist(app_path: Path) -> dict:
    info_path = Path(app_path) / "Contents" / "Info.plist"
    try:
        with info_path.open("rb") as handle:
            data = plistlib.load(handle)
    except (OSError, plistlib.InvalidFileException, ExpatError, ValueError) as exc:
        raise VersionUnreadable(f"Could not read {info_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise VersionUnreadable(f"{info_path} does not contain a dictionary")
    return data


def read_app_version(app_path: Path, logger: Optional[logging.Logger] = None) -> str:
    """
    Read CFBundleShortVersionString from an application bundle.

    Raises:
        VersionUnreadable: if Info.plist is missing or corrupt, or the key is
            absent or empty
    """
    log = logger or logging.getLogger(__name__)
    data = _read_info_plist(app_path)
    version = data.get("CFBundleShortVersionString")
    if not isinstance(version, str) or not version.strip():
        raise VersionUnreadable(f"CFBundleShortVersionString missing for {app_path}")
    log.debug("Installed version of %s: %s", app_path, version)
    return version.strip()


def read_bundle_identifier(app_path: Path) -> Optional[str]:
    try:
        data = _read_info_plist(app_path)
    except VersionUnreadable:
        return None
    bundle_id = data.get("CFBundleIdentifier")
    return bundle_id.strip() if isinstance(bundle_id, str) and bundle_id.strip() else None
