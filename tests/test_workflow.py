import logging
from pathlib import Path

import pytest

from jamf_deferral_tool.config import Config, build_prompt_settings
from jamf_deferral_tool.dialog import SwiftDialog
from jamf_deferral_tool.jamf import EnforcementError
from jamf_deferral_tool.ledger import DeferralLedger
from jamf_deferral_tool.models import DeferralRecord, DeferralScope, PromptOutcome, ResetMode
from jamf_deferral_tool.store import PersistenceError, PlistStore
from jamf_deferral_tool.workflow import run_update_prompt


class FakeProgress:
    def __init__(self):
        self.finished = False

    def finish(self):
        self.finished = True


class FakeDialog:
    def __init__(self, outcome=PromptOutcome.CONTINUE, available=True):
        self.outcome = outcome
        self.available = available
        self.binary = Path("/usr/local/bin/dialog")
        self.prompts = []
        self.progress = None

    def is_available(self):
        return self.available

    def prompt(self, title, icon, message, remaining):
        self.prompts.append({"title": title, "message": message, "remaining": remaining})
        return self.outcome

    def show_progress(self, title, icon, wait_time):
        self.progress = FakeProgress()
        self.progress.wait_time = wait_time
        return self.progress


class FakeTrigger:
    def __init__(self, exit_code=0):
        self.exit_code = exit_code
        self.calls = []

    def __call__(self, jamf_binary, trigger, logger=None):
        self.calls.append(trigger)
        return self.exit_code


@pytest.fixture
def config(tmp_path):
    return Config(
        org="Acme",
        device_preferences_dir=tmp_path / "Library" / "Preferences",
        users_dir=tmp_path / "Users",
        wait_time=5,
    )


def settings_for(app, required="2.0", max_deferrals="3", **kwargs):
    return build_prompt_settings(
        title="Google Chrome",
        app_path=str(app),
        required_version=required,
        max_deferrals=max_deferrals,
        policy_trigger="install_chrome",
        **kwargs,
    )


def device_ledger(config):
    return DeferralLedger(PlistStore(config.device_preferences_dir / "com.acme.googlechrome.deferrals.plist"))


def run(settings, config, dialog, trigger=None, user=None):
    return run_update_prompt(
        settings,
        config,
        dialog=dialog,
        trigger_runner=trigger or FakeTrigger(),
        console_user_lookup=lambda: user,
        logger=logging.getLogger("test"),
    )


class TestPreconditions:
    def test_missing_dialog(self, app_factory, config):
        result = run(settings_for(app_factory(version="1.0")), config, FakeDialog(available=False))
        assert result.exit_code == 1

    def test_app_not_installed(self, tmp_path, config):
        result = run(settings_for(tmp_path / "Missing.app"), config, FakeDialog())
        assert result.exit_code == 0
        assert result.action == "app-missing"

    def test_unreadable_version_mutates_nothing(self, app_factory, config):
        dialog = FakeDialog()
        result = run(settings_for(app_factory(version=None)), config, dialog)
        assert result.exit_code == 1
        assert dialog.prompts == []
        assert device_ledger(config).load() is None

    def test_already_compliant(self, app_factory, config):
        dialog = FakeDialog()
        result = run(settings_for(app_factory(version="2.0.0")), config, dialog)
        assert result.exit_code == 0
        assert result.action == "compliant"
        assert dialog.prompts == []


class TestDeferralFlow:
    def test_first_run_defer(self, app_factory, config):
        dialog = FakeDialog(outcome=PromptOutcome.DEFER)
        trigger = FakeTrigger()
        result = run(settings_for(app_factory(version="1.0")), config, dialog, trigger)
        assert result.exit_code == 0
        assert result.action == "deferred"
        assert dialog.prompts[0]["remaining"] == 3
        assert "_Remaining Deferrals: **3**_" in dialog.prompts[0]["message"]
        stored = device_ledger(config).load()
        assert (stored.remaining, stored.max) == (2, 3)
        assert stored.last_deferral_epoch is not None
        assert trigger.calls == []

    def test_user_scope_record_location(self, app_factory, config):
        run(settings_for(app_factory(version="1.0")), config, FakeDialog(outcome=PromptOutcome.DEFER), user="jdoe")
        path = config.users_dir / "jdoe" / "Library" / "Preferences" / "com.acme.googlechrome.deferrals.plist"
        assert DeferralLedger(PlistStore(path)).load().remaining == 2

    def test_device_scope_ignores_user(self, app_factory, config):
        config.deferral_scope = DeferralScope.DEVICE
        run(settings_for(app_factory(version="1.0")), config, FakeDialog(outcome=PromptOutcome.DEFER), user="jdoe")
        assert device_ledger(config).load().remaining == 2

    def test_exhausted_defer_installs(self, app_factory, config):
        device_ledger(config).persist(DeferralRecord(remaining=0, max=3, required_version_tag="2.0", required_version="2.0"))
        dialog = FakeDialog(outcome=PromptOutcome.DEFER)
        trigger = FakeTrigger(exit_code=0)
        result = run(settings_for(app_factory(version="1.0")), config, dialog, trigger)
        assert result.action == "installed"
        assert trigger.calls == ["install_chrome"]
        assert device_ledger(config).load().is_closed
        assert dialog.progress.finished

    def test_continue_clears_and_passes_exit_code(self, app_factory, config):
        device_ledger(config).persist(DeferralRecord(remaining=2, max=3, required_version_tag="2.0", last_deferral_epoch=5))
        dialog = FakeDialog(outcome=PromptOutcome.CONTINUE)
        result = run(settings_for(app_factory(version="1.0"), wait_time="10"), config, dialog, FakeTrigger(exit_code=4))
        assert result.exit_code == 4
        assert dialog.progress.wait_time == 10
        data = device_ledger(config).store.read_all()
        assert "Remaining" not in data and "LastDeferEpoch" not in data
        assert data["Max"] == 3

    def test_next_cycle_after_install_starts_fresh(self, app_factory, config):
        app = app_factory(version="1.0")
        run(settings_for(app), config, FakeDialog(outcome=PromptOutcome.CONTINUE))
        dialog = FakeDialog(outcome=PromptOutcome.DEFER)
        run(settings_for(app, required="3.0"), config, dialog)
        assert dialog.prompts[0]["remaining"] == 3

    def test_admin_raises_max(self, app_factory, config):
        device_ledger(config).persist(DeferralRecord(remaining=1, max=3, required_version_tag="2.0", required_version="2.0"))
        dialog = FakeDialog(outcome=PromptOutcome.DEFER)
        run(settings_for(app_factory(version="1.0"), max_deferrals="5"), config, dialog)
        assert dialog.prompts[0]["remaining"] == 3
        assert device_ledger(config).load().remaining == 2

    def test_required_version_bump_resets(self, app_factory, config):
        device_ledger(config).persist(DeferralRecord(remaining=0, max=3, required_version_tag="2.0", required_version="2.0"))
        dialog = FakeDialog(outcome=PromptOutcome.DEFER)
        run(settings_for(app_factory(version="1.0"), required="2.1"), config, dialog)
        assert dialog.prompts[0]["remaining"] == 3

    def test_required_version_bump_without_reset(self, app_factory, config):
        config.reset_mode = ResetMode.NEVER
        device_ledger(config).persist(DeferralRecord(remaining=0, max=3, required_version_tag="2.0", required_version="2.0"))
        dialog = FakeDialog(outcome=PromptOutcome.DEFER)
        trigger = FakeTrigger()
        run(settings_for(app_factory(version="1.0"), required="2.1"), config, dialog, trigger)
        assert dialog.prompts[0]["remaining"] == 0
        assert trigger.calls == ["install_chrome"]

    def test_deferral_write_failure_is_reported(self, app_factory, config, monkeypatch):
        dialog = FakeDialog(outcome=PromptOutcome.DEFER)
        app = app_factory(version="1.0")
        real_persist = DeferralLedger.persist
        calls = {"count": 0}

        def flaky_persist(self, record):
            calls["count"] += 1
            if calls["count"] > 1:
                raise PersistenceError("disk full")
            return real_persist(self, record)

        monkeypatch.setattr(DeferralLedger, "persist", flaky_persist)
        result = run(settings_for(app), config, dialog)
        assert result.exit_code == 1
        assert result.action == "error"

    def test_missing_jamf_binary(self, app_factory, config):
        def broken_trigger(jamf_binary, trigger, logger=None):
            raise EnforcementError("jamf binary not runnable")

        dialog = FakeDialog(outcome=PromptOutcome.CONTINUE)
        result = run_update_prompt(
            settings_for(app_factory(version="1.0")),
            config,
            dialog=dialog,
            trigger_runner=broken_trigger,
            console_user_lookup=lambda: None,
        )
        assert result.exit_code == 1
        assert dialog.progress.finished

    def test_corrupt_record_is_reinitialized(self, app_factory, config):
        path = config.device_preferences_dir / "com.acme.googlechrome.deferrals.plist"
        path.parent.mkdir(parents=True)
        path.write_bytes(b"not a plist")
        dialog = FakeDialog(outcome=PromptOutcome.DEFER)
        result = run(settings_for(app_factory(version="1.0")), config, dialog)
        assert result.action == "deferred"
        assert dialog.prompts[0]["remaining"] == 3
        stored = device_ledger(config).load()
        assert (stored.remaining, stored.max, stored.required_version_tag) == (2, 3, "2.0")

    def test_unusable_progress_command_file_still_installs(self, app_factory, config, tmp_path):
        class ContinueDialog(SwiftDialog):
            def is_available(self):
                return True

            def prompt(self, title, icon, message, remaining):
                return PromptOutcome.CONTINUE

        command_file = tmp_path / "dialog.log"
        command_file.mkdir()
        dialog = ContinueDialog(tmp_path / "missing-dialog", command_file, logger=logging.getLogger("test"))
        trigger = FakeTrigger(exit_code=0)
        result = run(settings_for(app_factory(version="1.0")), config, dialog, trigger)
        assert trigger.calls == ["install_chrome"]
        assert result.action == "installed"
        assert result.exit_code == 0
