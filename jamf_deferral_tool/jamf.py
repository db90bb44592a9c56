"""
Thin wrappers around the jamf binary and scutil.
"""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path
from typing import Optional


class EnforcementError(Exception):
    """Raised when the jamf binary cannot be executed."""


def parse_console_user(scutil_output: str) -> Optional[str]:
    """
    Extract the console user from ``scutil`` output.

    Returns None when nobody is logged in (no Name, or loginwindow).

    Examples:
        >>> parse_console_user("<dictionary> {\\n  Name : jdoe\\n  UID : 501\\n}")
        'jdoe'
    """
    for line in scutil_output.splitlines():
        match = re.match(r"\s*Name\s*:\s*(\S+)", line)
        if match:
            name = match.group(1)
            return None if name == "loginwindow" else name
    return None


def get_console_user(logger: Optional[logging.Logger] = None) -> Optional[str]:
    log = logger or logging.getLogger(__name__)
    try:
        result = subprocess.run(
            ["/usr/sbin/scutil"],
            input="show State:/Users/ConsoleUser\n",
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError:
        log.debug("scutil not available; assuming no console user")
        return None
    if result.returncode != 0:
        return None
    return parse_console_user(result.stdout or "")


def run_policy_trigger(jamf_binary: Path, trigger: str, logger: Optional[logging.Logger] = None) -> int:
    """
    Run ``jamf policy -event <trigger>`` and return its exit status.

    Raises:
        EnforcementError: if the jamf binary cannot be started
    """
    log = logger or logging.getLogger(__name__)
    cmd = [str(jamf_binary), "policy", "-event", trigger]
    log.info("Running %s", " ".join(cmd))
    try:
        result = subprocess.run(cmd, check=False)
    except (FileNotFoundError, PermissionError) as exc:
        raise EnforcementError(f"jamf binary not runnable at {jamf_binary}") from exc
    if result.returncode != 0:
        log.error("Jamf policy trigger '%s' exited with code %s", trigger, result.returncode)
    return result.returncode
