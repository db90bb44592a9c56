import logging
import subprocess
import types

from jamf_deferral_tool.dialog import (
    EXHAUSTED_LABEL,
    ProgressDialog,
    SwiftDialog,
    build_prompt_message,
    outcome_from_exit_code,
)
from jamf_deferral_tool.models import PromptOutcome


class TestPromptMessage:
    def test_contents(self):
        message = build_prompt_message("Acme", "Google Chrome", "126.0", "125.0", 2, "Takes 2 minutes.", "Self Service")
        assert "Acme requires **Google Chrome** to be updated to version **126.0**." in message
        assert "_Current version: **125.0**_" in message
        assert "_Remaining Deferrals: **2**_" in message
        assert "Takes 2 minutes." in message
        assert message.endswith("You can also update at any time from Self Service. Search for **Google Chrome**.")


class TestExitCodes:
    def test_mapping(self):
        assert outcome_from_exit_code(0) is PromptOutcome.CONTINUE
        assert outcome_from_exit_code(3) is PromptOutcome.DEFER
        assert outcome_from_exit_code(2) is PromptOutcome.CONTINUE
        assert outcome_from_exit_code(10) is PromptOutcome.CONTINUE


class TestSwiftDialog:
    def test_availability(self, tmp_path):
        binary = tmp_path / "dialog"
        dialog = SwiftDialog(binary, tmp_path / "dialog.log")
        assert not dialog.is_available()
        binary.write_text("#!/bin/sh\n", encoding="utf-8")
        binary.chmod(0o755)
        assert dialog.is_available()

    def test_prompt_args_when_exhausted(self, tmp_path):
        dialog = SwiftDialog(tmp_path / "dialog", tmp_path / "dialog.log")
        args = dialog.prompt_args("Zoom", "/Applications/zoom.us.app", "msg", remaining=0)
        assert args[args.index("--infobuttontext") + 1] == EXHAUSTED_LABEL
        assert args[args.index("--title") + 1] == "Zoom Update"
        assert "--quitoninfo" in args

    def test_prompt_runs_binary(self, tmp_path, monkeypatch):
        def fake_run(cmd, check):
            assert cmd[0] == str(tmp_path / "dialog")
            return types.SimpleNamespace(returncode=3)

        monkeypatch.setattr("subprocess.run", fake_run)
        dialog = SwiftDialog(tmp_path / "dialog", tmp_path / "dialog.log")
        assert dialog.prompt("Zoom", "/Applications/zoom.us.app", "msg", remaining=1) is PromptOutcome.DEFER


class TestProgressDialog:
    def test_finish_writes_quit_once(self, tmp_path):
        command_file = tmp_path / "dialog.log"
        progress = ProgressDialog(None, command_file, wait_time=60, logger=logging.getLogger("test"))
        progress.start()
        progress.finish()
        progress.finish()
        lines = command_file.read_text(encoding="utf-8").splitlines()
        assert lines[-2:] == ["progress: complete", "quit:"]
        assert lines.count("quit:") == 1

    def test_zero_wait_completes_immediately(self, tmp_path):
        command_file = tmp_path / "dialog.log"
        progress = ProgressDialog(None, command_file, wait_time=0, logger=logging.getLogger("test"))
        progress.start()
        progress._thread.join(timeout=5)
        assert command_file.read_text(encoding="utf-8").splitlines() == ["progress: complete", "quit:"]

    def test_finish_waits_for_window_to_close(self, tmp_path):
        class SlowProcess:
            def __init__(self):
                self.terminated = False
                self.timeouts = []

            def wait(self, timeout=None):
                self.timeouts.append(timeout)
                raise subprocess.TimeoutExpired("dialog", timeout)

            def terminate(self):
                self.terminated = True

        process = SlowProcess()
        progress = ProgressDialog(process, tmp_path / "dialog.log", wait_time=60, logger=logging.getLogger("test"))
        progress.start()
        progress.finish()
        assert process.timeouts == [5]
        assert process.terminated

    def test_unusable_command_file_does_not_raise(self, tmp_path):
        command_file = tmp_path / "dialog.log"
        command_file.mkdir()
        dialog = SwiftDialog(tmp_path / "missing-dialog", command_file, logger=logging.getLogger("test"))
        progress = dialog.show_progress("Zoom", "/Applications/zoom.us.app", wait_time=0)
        progress._thread.join(timeout=5)
        assert progress.process is None
        assert command_file.is_dir()
