import types
from pathlib import Path

import pytest

from jamf_deferral_tool.jamf import EnforcementError, get_console_user, parse_console_user, run_policy_trigger

SCUTIL_OUTPUT = """<dictionary> {
  GID : 20
  Name : jdoe
  UID : 501
}
"""


class TestConsoleUser:
    def test_parse(self):
        assert parse_console_user(SCUTIL_OUTPUT) == "jdoe"

    def test_loginwindow(self):
        assert parse_console_user(SCUTIL_OUTPUT.replace("jdoe", "loginwindow")) is None

    def test_no_user(self):
        assert parse_console_user("  No such key\n") is None

    def test_get_console_user(self, monkeypatch):
        def fake_run(cmd, input, capture_output, text, check):
            assert "ConsoleUser" in input
            return types.SimpleNamespace(returncode=0, stdout=SCUTIL_OUTPUT, stderr="")

        monkeypatch.setattr("subprocess.run", fake_run)
        assert get_console_user() == "jdoe"

    def test_scutil_missing(self, monkeypatch):
        def fake_run(*args, **kwargs):
            raise FileNotFoundError("scutil")

        monkeypatch.setattr("subprocess.run", fake_run)
        assert get_console_user() is None


class TestPolicyTrigger:
    def test_passes_exit_status_through(self, monkeypatch):
        calls = []

        def fake_run(cmd, check):
            calls.append(cmd)
            return types.SimpleNamespace(returncode=7)

        monkeypatch.setattr("subprocess.run", fake_run)
        assert run_policy_trigger(Path("/usr/local/bin/jamf"), "install_chrome") == 7
        assert calls == [["/usr/local/bin/jamf", "policy", "-event", "install_chrome"]]

    def test_missing_binary(self, monkeypatch):
        def fake_run(cmd, check):
            raise FileNotFoundError(cmd[0])

        monkeypatch.setattr("subprocess.run", fake_run)
        with pytest.raises(EnforcementError):
            run_policy_trigger(Path("/nope/jamf"), "install_chrome")
