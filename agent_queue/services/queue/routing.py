"""Maps free-text action types to queues for callers that do not pass a category.

The table is checked in order and the first match wins, so a type such as
``content-verify`` lands on the content generation queue.
"""

from __future__ import annotations

from agent_queue.services.queue.models import QueueName

CATEGORY_KEYWORDS: tuple[tuple[tuple[str, ...], QueueName], ...] = (
    (("content",), QueueName.CONTENT_GENERATION),
    (("seo", "technical"), QueueName.TECHNICAL_SEO),
    (("cms", "publish"), QueueName.CMS_PUBLISHING),
    (("verify",), QueueName.VERIFICATION),
)

DEFAULT_QUEUE = QueueName.AGENT_ACTIONS


def resolve_queue(action_type: str) -> QueueName:
    """Select the queue for an action type by substring match."""
    for keywords, queue_name in CATEGORY_KEYWORDS:
        if any(keyword in action_type for keyword in keywords):
            return queue_name
    return DEFAULT_QUEUE


def coerce_queue_name(name: str | QueueName) -> QueueName | None:
    """Return the matching queue, or None for an unknown name."""
    if isinstance(name, QueueName):
        return name
    try:
        return QueueName(name)
    except ValueError:
        return None
