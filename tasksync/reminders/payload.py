"""
Reminder notification content.
"""
from tasksync.push.models import NotificationPayload
from tasksync.sync.models import Task


DEFAULT_TITLE = "Task reminder"


def build_reminder_payload(task: Task) -> NotificationPayload:
    """
    Build the notification for a due task.

    The tag is stable per task so a newer notification replaces an older one
    on the device instead of stacking.
    """
    title = (task.title or "").strip() or DEFAULT_TITLE

    when = " ".join(part for part in (task.date, task.start) if part)
    body = f"Starts at {when}" if when else "Reminder"

    return NotificationPayload(
        title=title,
        body=body,
        url="/",
        tag=f"task-{task.id}",
    )


def build_test_payload() -> NotificationPayload:
    return NotificationPayload(
        title="Test notification",
        body="Push notifications are working",
        url="/",
        tag="test-push",
    )
