"""
SwiftDialog integration for the update prompt and the install progress window.
"""

from __future__ import annotations

import logging
import os
import subprocess
import threading
from pathlib import Path
from typing import List, Optional

from .models import PromptOutcome

# With --quitoninfo SwiftDialog exits 3 when the info button is clicked.
EXIT_BUTTON1 = 0
EXIT_INFO_BUTTON = 3

DEFER_LABEL = "Defer"
EXHAUSTED_LABEL = "Max Deferrals Reached"

# Seconds to wait for the progress window to exit after "quit:".
QUIT_TIMEOUT = 5


def build_prompt_message(
    org: str,
    title: str,
    required_version: str,
    installed_version: str,
    remaining: int,
    additional_info: str = "",
    software_portal: str = "Self Service",
) -> str:
    """
    Build the SwiftDialog markdown message for the update prompt.

    ``\\n`` sequences are left for SwiftDialog to render as new lines.
    """
    return (
        f"{org} requires **{title}** to be updated to version **{required_version}**.\\n\\n"
        f"_Current version: **{installed_version}**_\\n"
        f"_Remaining Deferrals: **{remaining}**_\\n\\n"
        f"{additional_info}\\n"
        f"You can also update at any time from {software_portal}. Search for **{title}**."
    )


def outcome_from_exit_code(code: int) -> PromptOutcome:
    """Map a SwiftDialog exit code to a prompt outcome; anything but the info button continues."""
    return PromptOutcome.DEFER if code == EXIT_INFO_BUTTON else PromptOutcome.CONTINUE


class ProgressDialog:
    """
    Time-based progress window driven through a SwiftDialog command file.

    The bar only tracks elapsed time, not real install progress.
    """

    def __init__(self, process: Optional[subprocess.Popen], command_file: Path, wait_time: int, logger: logging.Logger):
        self.process = process
        self.command_file = command_file
        self.wait_time = wait_time
        self.logger = logger
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._finished = False
        self._thread = threading.Thread(target=self._drive, name="dialog-progress", daemon=True)

    def start(self) -> "ProgressDialog":
        self._thread.start()
        return self

    def _send(self, command: str) -> None:
        try:
            with self.command_file.open("a", encoding="utf-8") as handle:
                handle.write(command + "\n")
        except OSError as exc:
            self.logger.debug(f"Could not write to {self.command_file}: {exc}")

    def _drive(self) -> None:
        for _ in range(self.wait_time):
            if self._stop.wait(1):
                return
            self._send("progress: increment")
        self.finish()

    def finish(self) -> None:
        """Complete the bar and close the window (safe to call more than once)."""
        with self._lock:
            if self._finished:
                return
            self._finished = True
        self._stop.set()
        self._send("progress: complete")
        self._send("quit:")
        if self.process is not None:
            try:
                self.process.wait(timeout=QUIT_TIMEOUT)
            except subprocess.TimeoutExpired:
                self.logger.debug(f"Progress dialog still open after {QUIT_TIMEOUT}s; terminating")
                self.process.terminate()


class SwiftDialog:
    """Runs the SwiftDialog binary."""

    def __init__(
        self,
        binary: Path,
        command_file: Path,
        height: int = 430,
        icon_size: int = 120,
        title_colour: str = "#00a4c7",
        logger: Optional[logging.Logger] = None,
    ):
        self.binary = Path(binary)
        self.command_file = Path(command_file)
        self.height = height
        self.icon_size = icon_size
        self.title_colour = title_colour
        self.logger = logger or logging.getLogger(__name__)

    def is_available(self) -> bool:
        return self.binary.is_file() and os.access(self.binary, os.X_OK)

    def prompt_args(self, title: str, icon: str, message: str, remaining: int) -> List[str]:
        info_button = DEFER_LABEL if remaining > 0 else EXHAUSTED_LABEL
        return [
            str(self.binary),
            "--title", f"{title} Update",
            "--titlefont", f"colour={self.title_colour}",
            "--icon", icon,
            "--message", message,
            "--infobuttontext", info_button,
            "--button1text", "Continue",
            "--height", str(self.height),
            "--iconsize", str(self.icon_size),
            "--quitoninfo",
            "--alignment", "centre",
            "--centreicon",
        ]

    def prompt(self, title: str, icon: str, message: str, remaining: int) -> PromptOutcome:
        """Show the update prompt and block until the user answers."""
        result = subprocess.run(self.prompt_args(title, icon, message, remaining), check=False)
        outcome = outcome_from_exit_code(result.returncode)
        self.logger.debug(f"SwiftDialog exited with {result.returncode} -> {outcome.value}")
        return outcome

    def show_progress(self, title: str, icon: str, wait_time: int) -> ProgressDialog:
        """Open the install progress window and start advancing it once per second."""
        try:
            self.command_file.unlink(missing_ok=True)
        except OSError as exc:
            self.logger.warning("Could not reset dialog command file %s: %s", self.command_file, exc)
        cmd = [
            str(self.binary),
            "--title", f"{title} Install",
            "--icon", icon,
            "--height", "230",
            "--progress", str(wait_time),
            "--progresstext", "",
            "--message", f"Please wait while {title} is installed...",
            "--commandfile", str(self.command_file),
        ]
        try:
            process = subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError as exc:
            self.logger.warning("Could not open progress dialog: %s", exc)
            process = None
        return ProgressDialog(process, self.command_file, wait_time, self.logger).start()
