"""
Deferral ledger: load, reconcile, decrement and close per-app deferral records.

The reconciliation rules are pure functions over ``DeferralRecord`` so they
can be exercised without touching disk; ``DeferralLedger`` binds them to a
``PlistStore``.

Plist keys (kept compatible with records written by earlier shell tooling):

    Remaining           int     deferrals left in the current cycle
    Max                 int     max deferrals configured on the last run
    RequiredVersion     string  required version seen on the last run
    DeferralVersionTag  string  required version that started the cycle
    LastDeferEpoch      int     epoch seconds of the most recent deferral
"""

from __future__ import annotations

import logging
import re
import time
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Dict, Iterator, Optional

from .config import ConfigError
from .models import DeferralRecord, DeferralScope, RecordKey
from .store import PersistenceError, PlistStore

KEY_REMAINING = "Remaining"
KEY_MAX = "Max"
KEY_REQUIRED_VERSION = "RequiredVersion"
KEY_VERSION_TAG = "DeferralVersionTag"
KEY_LAST_DEFER = "LastDeferEpoch"


class NoDeferralsRemaining(Exception):
    """Raised when a deferral is recorded against an empty budget."""


def normalize_shortname(value: str) -> str:
    """
    Normalize a title or identifier into a plist-safe shortname.

    Examples:
        >>> normalize_shortname("Google Chrome")
        'googlechrome'
        >>> normalize_shortname("Microsoft Teams (work)")
        'microsoftteamswork'
    """
    return re.sub(r"[^a-z0-9]+", "", value.lower())


def resolve_shortname(title: str, override: Optional[str] = None, bundle_id: Optional[str] = None) -> str:
    """Pick the record identity: explicit override, then bundle identifier, then title."""
    for candidate in (override, bundle_id, title):
        if candidate:
            shortname = normalize_shortname(candidate)
            if shortname:
                return shortname
    raise ConfigError(f"Cannot derive a shortname from title {title!r}")


def resolve_record_key(org: str, shortname: str, scope: DeferralScope, console_user: Optional[str]) -> RecordKey:
    """
    Build the record key, falling back to device scope when nobody is logged in.
    """
    if scope is DeferralScope.USER and console_user and console_user != "loginwindow":
        return RecordKey(org=normalize_shortname(org) or org, shortname=shortname, scope=DeferralScope.USER, user=console_user)
    return RecordKey(org=normalize_shortname(org) or org, shortname=shortname, scope=DeferralScope.DEVICE)


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


def reconcile(
    existing: Optional[DeferralRecord],
    configured_max: int,
    required_version: str,
    reset_on_version_change: bool,
) -> DeferralRecord:
    """
    Produce the record to use and persist for this run.

    Rules, in order:
      * no record, or a closed one: start a fresh cycle at ``configured_max``
      * max changed: shift ``remaining`` by the same delta, clamped to [0, max]
      * required version changed and resets are enabled: refill to max
      * always refresh the displayed required version

    Examples:
        >>> reconcile(None, 3, "2.0", True).remaining
        3
        >>> reconcile(DeferralRecord(remaining=1, max=3), 5, "2.0", True).remaining
        3
    """
    if configured_max < 0:
        raise ValueError("configured_max must be non-negative")

    if existing is None or existing.is_closed:
        return DeferralRecord(
            remaining=configured_max,
            max=configured_max,
            required_version_tag=required_version,
            required_version=required_version,
        )

    remaining = existing.remaining
    record_max = existing.max
    tag = existing.required_version_tag

    if record_max != configured_max:
        remaining = _clamp(remaining + (configured_max - record_max), 0, configured_max)
        record_max = configured_max

    if reset_on_version_change and tag and tag != required_version:
        remaining = configured_max
        tag = required_version

    return replace(
        existing,
        remaining=_clamp(remaining, 0, record_max),
        max=record_max,
        required_version_tag=tag,
        required_version=required_version,
    )


def record_deferral(record: DeferralRecord, now: Optional[float] = None) -> DeferralRecord:
    """
    Spend one deferral and stamp the time.

    Raises:
        NoDeferralsRemaining: if the record has no deferrals left
    """
    if record.remaining is None or record.remaining <= 0:
        raise NoDeferralsRemaining(f"No deferrals remaining (max {record.max})")
    stamp = int(time.time() if now is None else now)
    return replace(record, remaining=record.remaining - 1, last_deferral_epoch=stamp)


def clear_cycle(record: DeferralRecord) -> DeferralRecord:
    """Close the cycle; max and version metadata stay for audit."""
    return replace(record, remaining=None, last_deferral_epoch=None)


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


def _as_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def record_from_plist(data: Dict[str, Any]) -> Optional[DeferralRecord]:
    """
    Convert raw plist contents to a record.

    Returns None when there is no usable Max; a missing Remaining yields a
    closed record.
    """
    record_max = _as_int(data.get(KEY_MAX))
    if record_max is None or record_max < 0:
        return None
    remaining = _as_int(data.get(KEY_REMAINING))
    return DeferralRecord(
        remaining=remaining,
        max=record_max,
        required_version_tag=_as_str(data.get(KEY_VERSION_TAG)),
        required_version=_as_str(data.get(KEY_REQUIRED_VERSION)),
        last_deferral_epoch=_as_int(data.get(KEY_LAST_DEFER)),
    )


def record_to_plist(record: DeferralRecord) -> Dict[str, Any]:
    """Map a record to plist keys; None values mean "delete this key"."""
    return {
        KEY_REMAINING: record.remaining,
        KEY_MAX: record.max,
        KEY_REQUIRED_VERSION: record.required_version,
        KEY_VERSION_TAG: record.required_version_tag,
        KEY_LAST_DEFER: record.last_deferral_epoch,
    }


class DeferralLedger:
    """
    Deferral state for one record key, stored in a plist.
    """

    def __init__(self, store: PlistStore, key: Optional[RecordKey] = None, logger: Optional[logging.Logger] = None):
        self.store = store
        self.key = key
        self.logger = logger or logging.getLogger(__name__)

    def load(self) -> Optional[DeferralRecord]:
        """
        Read the stored record.

        Unreadable stores are logged and treated as absent so the cycle
        re-initializes instead of blocking the prompt.
        """
        try:
            data = self.store.read_all()
        except PersistenceError as exc:
            self.logger.warning("Ignoring unreadable deferral state: %s", exc)
            return None
        record = record_from_plist(data)
        if record is None:
            self.logger.debug(f"No deferral record in {self.store.path}")
        return record

    def persist(self, record: DeferralRecord) -> None:
        """
        Write every field of the record in one atomic replacement.

        Raises:
            PersistenceError: if the write fails
        """
        fields = record_to_plist(record)
        values = {k: v for k, v in fields.items() if v is not None}
        deletions = [k for k, v in fields.items() if v is None]
        self.store.update(values, deletions=deletions)
        self.logger.debug(
            f"Persisted deferral record remaining={record.remaining} max={record.max} "
            f"tag={record.required_version_tag} ({self.store.path})"
        )

    @contextmanager
    def locked(self, enabled: bool = True) -> Iterator[None]:
        if not enabled:
            yield
            return
        with self.store.locked():
            yield

    def begin_cycle(self, configured_max: int, required_version: str, reset_on_version_change: bool) -> DeferralRecord:
        """Load, reconcile and persist; the record for this run is returned."""
        existing = self.load()
        record = reconcile(existing, configured_max, required_version, reset_on_version_change)
        if existing is not None and not existing.is_closed and existing.required_version_tag != record.required_version_tag:
            self.logger.info(
                "Required version changed (%s -> %s). Resetting deferrals.",
                existing.required_version_tag,
                record.required_version_tag,
            )
        if existing is not None and not existing.is_closed and existing.max != record.max:
            self.logger.info("Max deferrals changed (%s -> %s). Remaining now %s.", existing.max, record.max, record.remaining)
        if record != existing:
            self.persist(record)
        return record
