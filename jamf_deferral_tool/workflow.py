"""
Update prompt workflow: compliance check, deferral bookkeeping, enforcement.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .compliance import VersionUnreadable, evaluate, read_app_version, read_bundle_identifier
from .config import Config, ConfigError, PromptSettings
from .dialog import SwiftDialog, build_prompt_message
from .jamf import EnforcementError, get_console_user, run_policy_trigger
from .ledger import (
    DeferralLedger,
    NoDeferralsRemaining,
    clear_cycle,
    record_deferral,
    resolve_record_key,
    resolve_shortname,
)
from .models import ComplianceStatus, DeferralRecord, PromptOutcome, RecordKey, ResetMode
from .store import PersistenceError, PlistStore

EXIT_OK = 0
EXIT_INVALID = 1


@dataclass
class WorkflowResult:
    exit_code: int
    action: str  # app-missing, compliant, deferred, installed, error
    installed_version: Optional[str] = None
    record: Optional[DeferralRecord] = None
    record_key: Optional[RecordKey] = None
    message: Optional[str] = None


def record_store_path(config: Config, key: RecordKey):
    return key.plist_path(config.device_preferences_dir, config.users_dir)


def build_ledger(config: Config, key: RecordKey, logger: logging.Logger) -> DeferralLedger:
    return DeferralLedger(PlistStore(record_store_path(config, key), logger=logger), key=key, logger=logger)


def run_update_prompt(
    settings: PromptSettings,
    config: Config,
    dialog: Optional[SwiftDialog] = None,
    trigger_runner: Callable[..., int] = run_policy_trigger,
    console_user_lookup: Callable[..., Optional[str]] = get_console_user,
    logger: Optional[logging.Logger] = None,
) -> WorkflowResult:
    """
    Prompt the user to update ``settings.title`` and enforce when required.

    Exit codes: 0 when nothing is needed or a deferral was recorded, 1 for
    precondition failures, otherwise the jamf policy's own exit status.
    """
    log = logger or logging.getLogger(__name__)
    dialog = dialog or SwiftDialog(
        config.dialog_binary,
        config.dialog_command_file,
        height=config.dialog_height,
        icon_size=config.dialog_icon_size,
        title_colour=config.dialog_title_colour,
        logger=log,
    )

    if not dialog.is_available():
        log.error("SwiftDialog not found at %s", dialog.binary)
        return WorkflowResult(EXIT_INVALID, "error", message="SwiftDialog not available")

    if not settings.app_path.exists():
        log.info("App not found on device: %s", settings.app_path)
        return WorkflowResult(EXIT_OK, "app-missing")

    try:
        installed = read_app_version(settings.app_path, logger=log)
        status = evaluate(installed, settings.required_version)
    except VersionUnreadable as exc:
        log.error("Could not determine installed version for %s: %s", settings.app_path, exc)
        return WorkflowResult(EXIT_INVALID, "error", message=str(exc))

    if status is ComplianceStatus.COMPLIANT:
        log.info("Already compliant. Installed=%s Required=%s", installed, settings.required_version)
        return WorkflowResult(EXIT_OK, "compliant", installed_version=installed)

    bundle_id = read_bundle_identifier(settings.app_path) if config.identity == "bundle_id" else None
    try:
        shortname = resolve_shortname(settings.title, settings.shortname_override, bundle_id)
    except ConfigError as exc:
        log.error("%s", exc)
        return WorkflowResult(EXIT_INVALID, "error", installed_version=installed, message=str(exc))
    key = resolve_record_key(config.org, shortname, config.deferral_scope, console_user_lookup())
    ledger = build_ledger(config, key, log)
    log.debug(f"Deferral domain {key.domain} ({key.scope.value} scope) at {ledger.store.path}")

    try:
        with ledger.locked(config.locking):
            record = ledger.begin_cycle(
                settings.max_deferrals,
                settings.required_version,
                reset_on_version_change=config.reset_mode is ResetMode.ON_UPDATE,
            )
    except PersistenceError as exc:
        log.error("Could not save deferral state: %s", exc)
        return WorkflowResult(EXIT_INVALID, "error", installed_version=installed, record_key=key, message=str(exc))

    message = build_prompt_message(
        org=config.org,
        title=settings.title,
        required_version=settings.required_version,
        installed_version=installed,
        remaining=record.remaining,
        additional_info=settings.additional_info,
        software_portal=config.software_portal,
    )
    outcome = dialog.prompt(settings.title, str(settings.app_path), message, record.remaining)

    if outcome is PromptOutcome.DEFER:
        try:
            deferred = record_deferral(record)
        except NoDeferralsRemaining:
            log.info("Deferral requested with none remaining; proceeding with installation")
        else:
            try:
                with ledger.locked(config.locking):
                    ledger.persist(deferred)
            except PersistenceError as exc:
                log.error("Deferral could not be saved, not honouring it: %s", exc)
                return WorkflowResult(EXIT_INVALID, "error", installed_version=installed, record=record, record_key=key, message=str(exc))
            log.info("User deferred. Remaining=%s (plist=%s)", deferred.remaining, ledger.store.path)
            return WorkflowResult(EXIT_OK, "deferred", installed_version=installed, record=deferred, record_key=key)

    log.info("Proceeding with installation via Jamf trigger '%s'", settings.policy_trigger)
    closed = clear_cycle(record)
    try:
        with ledger.locked(config.locking):
            ledger.persist(closed)
    except PersistenceError as exc:
        log.error("Could not clear deferral state before install: %s", exc)

    wait_time = settings.wait_time if settings.wait_time is not None else config.wait_time
    progress = dialog.show_progress(settings.title, str(settings.app_path), wait_time)
    try:
        exit_code = trigger_runner(config.jamf_binary, settings.policy_trigger, logger=log)
    except EnforcementError as exc:
        log.error("%s", exc)
        exit_code = EXIT_INVALID
    finally:
        progress.finish()

    return WorkflowResult(exit_code, "installed", installed_version=installed, record=closed, record_key=key)
