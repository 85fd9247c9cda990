"""Topic registry - reference-counted broadcast channels keyed by ref.

Each topic fans change events out to one queue per attached listener.
Collection listeners (``posts``) and document listeners (``posts/123``)
receive the same underlying event.

The registry is not locked: it is only touched from the event loop thread
that owns the ConnectionManager, and none of its methods await.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from .types import ChangeEvent

logger = logging.getLogger(__name__)


@dataclass
class Topic:
    """All active listeners for push events on one ref."""

    ref: str
    queues: set[asyncio.Queue[ChangeEvent]] = field(default_factory=set)
    # Timer that confirms removal once the grace window passes with no listeners
    pending_removal: asyncio.TimerHandle | None = None

    @property
    def listener_count(self) -> int:
        return len(self.queues)

    def cancel_pending_removal(self) -> bool:
        """Cancel a scheduled removal. Returns True if one was pending."""
        if self.pending_removal is None:
            return False
        self.pending_removal.cancel()
        self.pending_removal = None
        return True


class TopicRegistry:
    """Lazily created, reference-counted topics."""

    def __init__(self) -> None:
        self._topics: dict[str, Topic] = {}

    def __contains__(self, ref: object) -> bool:
        return ref in self._topics

    def __len__(self) -> int:
        return len(self._topics)

    def refs(self) -> list[str]:
        return list(self._topics)

    def get(self, ref: str) -> Topic | None:
        return self._topics.get(ref)

    def listener_count(self, ref: str) -> int:
        topic = self._topics.get(ref)
        return topic.listener_count if topic else 0

    def attach(self, ref: str) -> asyncio.Queue[ChangeEvent]:
        """Register a listener on ``ref``, creating the topic if needed.

        Attaching cancels any pending removal of the topic.
        """
        topic = self._topics.get(ref)
        if topic is None:
            topic = Topic(ref=ref)
            self._topics[ref] = topic
            logger.debug(f"Topic created: {ref}")
        elif topic.cancel_pending_removal():
            logger.debug(f"Pending unsubscribe cancelled: {ref}")

        queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        topic.queues.add(queue)
        return queue

    def detach(self, ref: str, queue: asyncio.Queue[ChangeEvent]) -> int:
        """Remove a listener. Returns the remaining listener count."""
        topic = self._topics.get(ref)
        if topic is None:
            return 0
        topic.queues.discard(queue)
        return topic.listener_count

    def remove_if_idle(self, ref: str) -> bool:
        """Drop the topic if nobody listens. Returns True if it was removed."""
        topic = self._topics.get(ref)
        if topic is None or topic.listener_count > 0:
            return False
        topic.cancel_pending_removal()
        del self._topics[ref]
        logger.debug(f"Topic removed: {ref}")
        return True

    def publish(self, ref: str, change: ChangeEvent) -> int:
        """Deliver ``change`` to every listener of ``ref``.

        Publishing to a ref without a topic is a no-op: the event is dropped.

        Returns:
            Number of listeners the change was delivered to
        """
        topic = self._topics.get(ref)
        if topic is None:
            return 0
        for queue in list(topic.queues):
            queue.put_nowait(change)
        return topic.listener_count

    def dispatch(self, change: ChangeEvent) -> int:
        """Fan a change out to its collection topic and its document topic.

        The document-level copy is re-tagged with the document ref.
        """
        delivered = self.publish(change.ref, change)
        record_id = change.record_id
        if record_id is not None:
            document_ref = f"{change.ref}/{record_id}"
            delivered += self.publish(
                document_ref, change.model_copy(update={"ref": document_ref})
            )
        return delivered
