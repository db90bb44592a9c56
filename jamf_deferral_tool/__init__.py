"""
Jamf Deferral Tool package exposing CLI and helper modules.
"""

__version__ = "1.0.0"

__all__ = [
    "cli",
    "compliance",
    "config",
    "dialog",
    "jamf",
    "ledger",
    "logging_utils",
    "models",
    "store",
    "system_info",
    "teams_webhook",
    "workflow",
]
