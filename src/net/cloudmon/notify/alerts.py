"""Canned notifications raised by the monitoring flows.

Each helper builds the event payload and hands it to the dispatcher in the
background, so the triggering request never waits on or fails because of
webhook delivery.
"""

import asyncio
from typing import Optional

from net.cloudmon.notify.dispatcher import EventType, NotificationDispatcher


def _money(value: float) -> str:
    return f"${value:.2f}"


def notify_quota_warning(
    dispatcher: NotificationDispatcher,
    account_name: str,
    remaining: float,
    threshold: float,
) -> asyncio.Task:
    return dispatcher.dispatch_in_background(
        EventType.quota_warning,
        {
            "accountName": account_name,
            "remaining": _money(remaining),
            "threshold": _money(threshold),
            "message": (
                f"Account {account_name} has {_money(remaining)} of quota left, "
                f"below the {_money(threshold)} threshold"
            ),
        },
    )


def check_quota(
    dispatcher: NotificationDispatcher,
    account_name: str,
    remaining: float,
    threshold: float,
) -> Optional[asyncio.Task]:
    """Raise a quota warning when the remaining free quota drops below threshold."""
    if remaining < threshold:
        return notify_quota_warning(dispatcher, account_name, remaining, threshold)
    return None


def notify_service_down(
    dispatcher: NotificationDispatcher,
    account_name: str,
    service_name: str,
    project_name: str,
) -> asyncio.Task:
    return dispatcher.dispatch_in_background(
        EventType.service_down,
        {
            "accountName": account_name,
            "serviceName": service_name,
            "projectName": project_name,
            "message": f"Service {service_name} ({project_name}) has stopped",
        },
    )


def notify_login_failed(
    dispatcher: NotificationDispatcher, ip: Optional[str], attempts: int = 1
) -> asyncio.Task:
    return dispatcher.dispatch_in_background(
        EventType.login_failed,
        {
            "ip": ip,
            "attempts": attempts,
            "message": f"Login from {ip} failed {attempts} time(s)",
        },
    )


def notify_account_added(
    dispatcher: NotificationDispatcher, count: int
) -> asyncio.Task:
    return dispatcher.dispatch_in_background(EventType.account_added, {"count": count})


def notify_account_removed(
    dispatcher: NotificationDispatcher, account_name: str
) -> asyncio.Task:
    return dispatcher.dispatch_in_background(
        EventType.account_removed, {"accountName": account_name}
    )
