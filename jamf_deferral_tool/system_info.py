"""
Help desk system summary for the local Mac.

Every collector is best effort: commands that are missing or print something
unexpected yield None instead of raising.
"""

from __future__ import annotations

import logging
import plistlib
import re
import socket
import subprocess
import time
from dataclasses import asdict
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence
from xml.parsers.expat import ExpatError

import psutil

from .models import SystemInfo

MODEL_INFO_PLIST = Path(
    "/System/Library/PrivateFrameworks/DeviceIdentity.framework/Versions/A/Resources/DeviceIdentityModelInfo.plist"
)
AIRPORT_BINARY = "/System/Library/PrivateFrameworks/Apple80211.framework/Versions/Current/Resources/airport"
JAMF_ACTIVITY_RE = re.compile(r"Checking for policies|Submitting inventory|Contacting JSS")

CommandRunner = Callable[[Sequence[str]], Optional[str]]


def run_command(cmd: Sequence[str]) -> Optional[str]:
    """Run a command and return stdout, or None if it failed or does not exist."""
    try:
        result = subprocess.run(list(cmd), capture_output=True, text=True, check=False)
    except (FileNotFoundError, PermissionError):
        return None
    if result.returncode != 0:
        return None
    return result.stdout


def parse_ioreg_serial(output: str) -> Optional[str]:
    """
    Examples:
        >>> parse_ioreg_serial('    "IOPlatformSerialNumber" = "C02XK0AAJGH5"')
        'C02XK0AAJGH5'
    """
    match = re.search(r'"IOPlatformSerialNumber"\s*=\s*"([^"]+)"', output)
    return match.group(1) if match else None


def format_uptime(seconds: int) -> str:
    """
    Examples:
        >>> format_uptime(90061)
        '1 day(s), 01 hour(s), 01 min(s)'
        >>> format_uptime(3900)
        '01 hour(s), 05 min(s)'
    """
    seconds = max(0, int(seconds))
    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    mins = seconds // 60
    if days > 0:
        return f"{days} day(s), {hours:02d} hour(s), {mins:02d} min(s)"
    return f"{hours:02d} hour(s), {mins:02d} min(s)"


def parse_route_interface(output: str) -> Optional[str]:
    match = re.search(r"interface:\s*(\S+)", output)
    return match.group(1) if match else None


def parse_airport_ssid(output: str) -> Optional[str]:
    for line in output.splitlines():
        match = re.match(r"\s+SSID:\s*(.+)$", line)
        if match:
            return match.group(1).strip() or None
    return None


def parse_jamf_server(output: str) -> Optional[str]:
    for line in output.splitlines():
        match = re.search(r"Checking connection to\s*:?\s*(.+)$", line)
        if match:
            return match.group(1).strip().rstrip(".") or None
    return None


def last_jamf_activity(log_path: Path) -> Optional[str]:
    """Return the last jamf.log line mentioning a check-in, or None."""
    try:
        lines = log_path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError:
        return None
    for line in reversed(lines):
        if JAMF_ACTIVITY_RE.search(line):
            return line.strip()
    return None


def get_serial(run: CommandRunner = run_command) -> Optional[str]:
    output = run(["ioreg", "-rd1", "-c", "IOPlatformExpertDevice"])
    return parse_ioreg_serial(output) if output else None


def get_os(run: CommandRunner = run_command) -> Optional[str]:
    parts = [(run(["sw_vers", flag]) or "").strip() for flag in ("-productName", "-productVersion", "-buildVersion")]
    name, version, build = parts
    if not (name or version):
        return None
    return f"{name} {version} ({build})" if build else f"{name} {version}".strip()


def get_model(run: CommandRunner = run_command, model_plist: Path = MODEL_INFO_PLIST) -> Optional[str]:
    model_id = (run(["sysctl", "-n", "hw.model"]) or "").strip()
    if not model_id:
        return None
    try:
        with model_plist.open("rb") as handle:
            models = plistlib.load(handle)
    except (OSError, plistlib.InvalidFileException, ExpatError, ValueError):
        return model_id
    marketing = models.get(model_id) if isinstance(models, dict) else None
    return marketing if isinstance(marketing, str) and marketing else model_id


def get_uptime(now: Optional[float] = None) -> Optional[str]:
    try:
        boot = psutil.boot_time()
    except (psutil.Error, OSError):
        return None
    return format_uptime(int((now if now is not None else time.time()) - boot))


def active_ipv4_addresses() -> List[str]:
    """Return "iface: address" entries for IPv4 addresses on interfaces that are up, loopback excluded."""
    try:
        addrs = psutil.net_if_addrs()
        stats = psutil.net_if_stats()
    except (psutil.Error, OSError):
        return []
    entries = []
    for name, iface_addrs in addrs.items():
        iface_stats = stats.get(name)
        if iface_stats is None or not iface_stats.isup:
            continue
        for addr in iface_addrs:
            if addr.family == socket.AF_INET and not addr.address.startswith("127."):
                entries.append(f"{name}: {addr.address}")
    return entries


def get_ip_summary(run: CommandRunner = run_command) -> Optional[str]:
    iface = parse_route_interface(run(["route", "-n", "get", "default"]) or "")
    ip4 = (run(["ipconfig", "getifaddr", iface]) or "").strip() if iface else ""
    if iface and ip4:
        ssid = parse_airport_ssid(run([AIRPORT_BINARY, "-I"]) or "")
        return f"{iface}: {ip4} (Wi-Fi: {ssid})" if ssid else f"{iface}: {ip4}"
    entries = active_ipv4_addresses()
    return ", ".join(entries) or None


def get_jamf_status(jamf_binary: Path, jamf_log: Path, run: CommandRunner = run_command) -> Dict[str, str]:
    if not jamf_binary.exists():
        return {"enrolled": "No (jamf binary not found)", "server": "N/A", "last_activity": "N/A"}
    server = parse_jamf_server(run([str(jamf_binary), "checkJSSConnection"]) or "")
    if jamf_log.exists():
        last = last_jamf_activity(jamf_log) or "jamf.log present (no recent entry parsed)"
    else:
        last = "jamf.log not found"
    return {
        "enrolled": "Yes",
        "server": server or "Connected (server not parsed)",
        "last_activity": last,
    }


def collect_system_info(
    jamf_binary: Path,
    jamf_log: Path,
    run: CommandRunner = run_command,
    logger: Optional[logging.Logger] = None,
) -> SystemInfo:
    log = logger or logging.getLogger(__name__)
    jamf = get_jamf_status(jamf_binary, jamf_log, run=run)
    info = SystemInfo(
        serial=get_serial(run),
        model=get_model(run),
        os=get_os(run),
        uptime=get_uptime(),
        ip=get_ip_summary(run),
        jamf_enrolled=jamf["enrolled"],
        jamf_server=jamf["server"],
        jamf_last_activity=jamf["last_activity"],
    )
    log.debug(f"Collected system info: {asdict(info)}")
    return info


def render_system_info(info: SystemInfo) -> str:
    """Render the summary block shown to help desk technicians."""
    def show(value: Optional[str]) -> str:
        return value if value else "Unknown"

    rule = "=" * 30
    return "\n".join(
        [
            rule,
            " System Info for Help Desk",
            rule,
            f"Serial:      {show(info.serial)}",
            f"Model:       {show(info.model)}",
            f"OS:          {show(info.os)}",
            f"Uptime:      {show(info.uptime)}",
            f"IP:          {show(info.ip)}",
            "",
            "Jamf Status:",
            f"Enrolled: {show(info.jamf_enrolled)}",
            f"Jamf Server: {show(info.jamf_server)}",
            f"Last Jamf Activity: {show(info.jamf_last_activity)}",
            rule,
        ]
    )
