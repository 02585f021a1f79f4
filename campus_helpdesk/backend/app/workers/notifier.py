# campus_helpdesk/backend/app/workers/notifier.py

import logging
from typing import Mapping, Optional

from sqlalchemy.orm import Session

from ..clock import utcnow
from ..errors import DeliveryFailed
from ..models.notification import Notification
from ..models.outbox import OutboxEntry
from .channels import NotificationMessage

logger = logging.getLogger(__name__)


class Notifier:
    """
    Sends one message on one channel for one outbox event, at most once.

    A delivery is recorded in `notifications` as soon as the channel
    accepts it. When the event is retried after a partial failure, the
    recorded deliveries are skipped and only the missing ones are sent.
    """

    def __init__(self, channels: Mapping[str, object]):
        self.channels = channels

    def already_sent(self, db: Session, entry: OutboxEntry, channel: str, recipient: str) -> bool:
        return (
            db.query(Notification.id)
            .filter(
                Notification.outbox_id == entry.id,
                Notification.channel == channel,
                Notification.recipient == recipient,
            )
            .first()
            is not None
        )

    async def deliver(
        self,
        db: Session,
        entry: OutboxEntry,
        channel_name: str,
        message: NotificationMessage,
        user_id: Optional[int] = None,
    ) -> bool:
        """Returns False when this delivery already happened."""
        if self.already_sent(db, entry, channel_name, message.recipient):
            logger.info(
                "[NOTIFY] outbox=%s %s -> %s already delivered, skipping",
                entry.id, channel_name, message.recipient,
            )
            return False

        channel = self.channels.get(channel_name)
        if channel is None:
            raise DeliveryFailed(channel_name, "channel is not configured")

        result = await channel.send(message)
        if not result.success:
            raise DeliveryFailed(channel_name, result.error or "unknown error")

        db.add(
            Notification(
                outbox_id=entry.id,
                ticket_id=message.ticket_id,
                user_id=user_id,
                channel=channel_name,
                recipient=message.recipient,
                event_type=entry.event_type,
                sent_at=utcnow(),
            )
        )
        db.commit()
        return True
