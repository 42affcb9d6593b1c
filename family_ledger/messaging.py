"""
Cluster Messaging Module

Append-only messages between identities of one cluster. A message addressed
to "cluster" is a broadcast visible to everyone in the cluster; any other
message is visible only to its sender and recipient.
"""

import uuid
from datetime import datetime
from typing import Callable, List, Optional

from .authorization import Action, AuthTarget, require, require_active
from .errors import NotFound, ValidationError
from .logging_config import get_logger, log_action
from .models import BROADCAST, Message, Session
from .registry import IdentityRegistry
from .sessions import utc_now
from .storage import MESSAGES, EntityStore

logger = get_logger("family_ledger.messaging")


class MessageBoard:
    """Sends and lists messages within one cluster"""

    def __init__(self, store: EntityStore, registry: IdentityRegistry,
                 clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.registry = registry
        self.clock = clock

    def send_message(self, session: Session, text: str, to_id: str = BROADCAST,
                     reply_to_id: Optional[str] = None) -> Message:
        now = self.clock()
        if session is None or not session.is_valid(now):
            require(session, Action.SEND_MESSAGE, now=now)

        if to_id == BROADCAST:
            target_cluster = session.cluster_id
        else:
            recipient = self.registry.get(to_id)
            if recipient is None:
                raise NotFound("Recipient not found.")
            target_cluster = recipient.cluster_id

        require(session, Action.SEND_MESSAGE,
                AuthTarget(identity_id=to_id, cluster_id=target_cluster), now=now)

        if not text or not text.strip():
            raise ValidationError("message text is required")

        if reply_to_id is not None:
            original = self._get(reply_to_id)
            if (original is None or original.cluster_id != session.cluster_id
                    or not original.visible_to(session.identity_id)):
                raise NotFound("Message being replied to not found.")

        message = Message(
            id=str(uuid.uuid4()),
            cluster_id=session.cluster_id,
            from_id=session.identity_id,
            from_role=session.role,
            to_id=to_id,
            text=text.strip(),
            timestamp=now,
            is_read=False,
            reply_to_id=reply_to_id
        )
        self.store.append(MESSAGES, message.to_dict())

        log_action(logger, "info", "Message sent",
                   identity_id=session.identity_id, cluster_id=session.cluster_id,
                   action="send_message", resource=message.id,
                   extra={'broadcast': message.is_broadcast})
        return message

    def list_messages(self, session: Session) -> List[Message]:
        """Messages of the caller's cluster that the caller may see"""
        require_active(session, self.clock())
        messages = [Message.from_dict(data) for data in self.store.all(MESSAGES)]
        return [m for m in messages
                if m.cluster_id == session.cluster_id and m.visible_to(session.identity_id)]

    def _get(self, message_id: str) -> Optional[Message]:
        data = self.store.get(MESSAGES, message_id)
        return Message.from_dict(data) if data else None
