"""
Notifications module - best-effort job progress messages.
"""

from .bridge import NotificationBridge
from .slack import Notifier, NullNotifier, SlackNotifier


def build_notifier(settings) -> Notifier:
    """SlackNotifier when SLACK_API_TOKEN is set, otherwise NullNotifier."""
    if settings.slack_api_token:
        return SlackNotifier(settings.slack_api_token, channel=settings.slack_channel)
    return NullNotifier()


__all__ = [
    "NotificationBridge",
    "Notifier",
    "NullNotifier",
    "SlackNotifier",
    "build_notifier",
]
