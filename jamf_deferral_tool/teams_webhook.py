"""
Teams notifications for deferrals and enforced installs.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from .config import PromptSettings
from .workflow import WorkflowResult

# Only outcomes that changed something on the Mac are reported.
NOTIFY_ACTIONS = ("deferred", "installed")

COLOUR_DEFERRED = "FFB900"
COLOUR_INSTALLED = "107C10"
COLOUR_FAILED = "D13438"


def _remaining_text(result: WorkflowResult) -> str:
    record = result.record
    if record is None:
        return "unknown"
    if record.is_closed:
        return f"cycle closed (max {record.max})"
    return f"{record.remaining} of {record.max}"


def outcome_facts(settings: PromptSettings, result: WorkflowResult) -> List[Dict[str, str]]:
    facts = [
        ("Application", settings.title),
        ("Installed version", result.installed_version or "unknown"),
        ("Required version", settings.required_version),
        ("Deferrals remaining", _remaining_text(result)),
    ]
    key = result.record_key
    if key is not None:
        facts.append(("Deferral domain", key.domain))
        facts.append(("Scope", f"user {key.user}" if key.user else key.scope.value))
    if result.action == "installed":
        facts.append(("Policy trigger", settings.policy_trigger))
        facts.append(("Jamf exit status", str(result.exit_code)))
    return [{"name": name, "value": value} for name, value in facts]


def build_outcome_card(settings: PromptSettings, result: WorkflowResult) -> Dict[str, Any]:
    """Build a MessageCard describing one deferral or enforced install."""
    if result.action == "deferred":
        headline = f"{settings.title} update deferred"
        colour = COLOUR_DEFERRED
    elif result.exit_code == 0:
        headline = f"{settings.title} update enforced"
        colour = COLOUR_INSTALLED
    else:
        headline = f"{settings.title} update enforcement failed"
        colour = COLOUR_FAILED
    return {
        "@type": "MessageCard",
        "@context": "http://schema.org/extensions",
        "summary": headline,
        "themeColor": colour,
        "title": headline,
        "sections": [{"facts": outcome_facts(settings, result)}],
    }


def notify_outcome(
    webhook_url: str,
    settings: PromptSettings,
    result: WorkflowResult,
    logger: Optional[logging.Logger] = None,
) -> bool:
    """
    Post the outcome card when the run deferred or enforced an update.

    Failures are logged and never change the outcome of the run.

    Returns:
        True if a card was accepted by the webhook
    """
    log = logger or logging.getLogger(__name__)
    if result.action not in NOTIFY_ACTIONS:
        log.debug(f"No Teams notification for action {result.action}")
        return False
    try:
        resp = requests.post(webhook_url, json=build_outcome_card(settings, result), timeout=10)
    except requests.RequestException as exc:
        log.warning("Failed to post Teams webhook: %s", exc)
        return False
    if resp.status_code >= 400:
        log.warning("Teams webhook returned HTTP %s: %s", resp.status_code, resp.text[:200])
        return False
    return True
