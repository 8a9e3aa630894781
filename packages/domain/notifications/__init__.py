"""
Notifications - milestone scheduler, message composition and email transport
"""

from packages.domain.notifications.messages import (
    compose_milestone_message,
    compose_price_drop_message,
)
from packages.domain.notifications.notifier import Notifier, PostmarkNotifier
from packages.domain.notifications.scheduler import NotificationScheduler, milestone_window
from packages.domain.notifications.schemas import NotificationMessage, SchedulerRunResult

__all__ = [
    'NotificationMessage',
    'NotificationScheduler',
    'Notifier',
    'PostmarkNotifier',
    'SchedulerRunResult',
    'compose_milestone_message',
    'compose_price_drop_message',
    'milestone_window',
]
