"""
Conversation/message service.

Orchestrates conversation creation, message sending, read-marking and
conversation flag changes over the Repository, and hands new messages to
the EventDispatcher for live delivery to the other participants.

Validation and authorization errors are raised synchronously from here
(see core.exceptions); the live push never affects the outcome of a send.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional
from api.metrics import (
    conversations_created_total, messages_created_total, messages_marked_read_total
)
from api.schemas import (
    ConversationOut, ConversationSummary, MessageEvent, MessageOut
)
from api.websocket_manager import ConnectionRegistry, EventDispatcher
from core.audit_logger import audit_logger
from core.config import settings
from core.exceptions import InvalidContent, InvalidParticipants, NotFound, NotParticipant
from db.models import Conversation
from db.repository import Repository
from services.serializers import (
    conversation_fields, conversation_out, last_message_out, message_out, user_summaries
)

logger = logging.getLogger(__name__)


class ConversationService:
    """Conversation and message operations for an authenticated user."""

    def __init__(
        self,
        repository: Repository,
        dispatcher: EventDispatcher,
        registry: Optional[ConnectionRegistry] = None,
        max_content_length: Optional[int] = None
    ):
        self.repository = repository
        self.dispatcher = dispatcher
        self.registry = registry if registry is not None else dispatcher.registry
        self.max_content_length = max_content_length or settings.message_max_length

    def _get_conversation_for(self, user_id: int, conversation_id: int, action: str) -> Conversation:
        """
        Load a conversation and check the user participates in it.

        Raises:
            NotFound: conversation does not exist
            NotParticipant: user is not in its participant set
        """
        conversation = self.repository.get_conversation_by_id(conversation_id)
        if conversation is None:
            raise NotFound("Conversation not found")

        if not self.repository.is_conversation_member(conversation_id, user_id):
            audit_logger.log_authorization_denied(
                user_id=user_id,
                resource=f"conversation:{conversation_id}",
                action=action,
                reason="not a participant"
            )
            raise NotParticipant()

        return conversation

    def create_conversation(
        self,
        creator_id: int,
        other_participant_ids: List[int],
        title: Optional[str] = None
    ) -> ConversationOut:
        """
        Create a conversation between the creator and the named users.

        Participant IDs are de-duplicated (creator first, then the others in
        the order given). Every participant must be an existing user and
        there must be at least two of them.

        Raises:
            InvalidParticipants: fewer than two participants, or unknown users
        """
        participant_ids = [creator_id]
        for user_id in other_participant_ids:
            if user_id not in participant_ids:
                participant_ids.append(user_id)

        if len(participant_ids) < 2:
            raise InvalidParticipants("A conversation needs at least one other participant")

        known_users = self.repository.get_users_by_ids(participant_ids)
        missing = [user_id for user_id in participant_ids if user_id not in known_users]
        if missing:
            raise InvalidParticipants(f"Unknown user IDs: {missing}")

        is_group = len(participant_ids) > 2
        conversation = self.repository.create_conversation(
            participant_ids=participant_ids,
            title=title,
            is_group=is_group
        )

        conversations_created_total.labels(
            conversation_type="group" if is_group else "direct",
            instance="api"
        ).inc()
        logger.info(
            f"Conversation {conversation.id} created by user {creator_id} "
            f"with {len(participant_ids)} participants"
        )
        return conversation_out(conversation)

    def list_conversations(self, user_id: int) -> List[ConversationSummary]:
        """
        Conversations containing the user, most recently active first,
        each with participants, last message and the user's unread count.
        """
        conversations = self.repository.get_user_conversations(user_id)
        conversation_ids = [conversation.id for conversation in conversations]
        last_messages = self.repository.get_last_messages(conversation_ids)
        unread_counts = self.repository.count_unread_by_conversation(conversation_ids, user_id)

        now = datetime.utcnow()
        summaries = []
        for conversation in conversations:
            participants = [member.user for member in conversation.members]
            summaries.append(ConversationSummary(
                **conversation_fields(conversation, now),
                participants=user_summaries(participants, self.registry),
                last_message=last_message_out(last_messages.get(conversation.id)),
                unread_count=unread_counts.get(conversation.id, 0)
            ))

        logger.info(f"User {user_id} listed {len(summaries)} conversations")
        return summaries

    async def send_message(self, sender_id: int, conversation_id: int, content: str) -> MessageOut:
        """
        Persist a message and push it to the other participants.

        The message starts with read-set {sender} and bumps the
        conversation's last activity. Pushes are best-effort; the send
        succeeds whether or not any recipient is online.

        Raises:
            NotFound: conversation does not exist
            NotParticipant: sender is not a participant (nothing is written)
            InvalidContent: empty content or longer than the configured bound
        """
        conversation = self._get_conversation_for(sender_id, conversation_id, "send_message")

        if not content or not content.strip():
            raise InvalidContent("Message content must not be empty")
        if len(content) > self.max_content_length:
            raise InvalidContent(
                f"Message content exceeds {self.max_content_length} characters"
            )

        message = self.repository.create_message(conversation_id, sender_id, content)
        sender = self.repository.get_user_by_id(sender_id)
        recipients = [user_id for user_id in conversation.participant_ids if user_id != sender_id]

        messages_created_total.labels(
            conversation_type="group" if conversation.is_group else "direct",
            instance="api"
        ).inc()
        logger.info(f"Message {message.id} sent by user {sender_id} to conversation {conversation_id}")

        payload = message_out(message, sender, self.registry)
        delivered = await self.dispatcher.push_many(recipients, MessageEvent(data=payload))
        logger.debug(
            f"Message {message.id} pushed live to {delivered}/{len(recipients)} recipients"
        )
        return payload

    def get_messages(self, conversation_id: int, requester_id: int) -> List[MessageOut]:
        """
        Messages of a conversation in chronological order.

        Viewing a conversation marks every message in it read for the
        requester. The returned read-sets are those seen before marking,
        so the requester shows up in them from the next fetch on.

        Raises:
            NotFound: conversation does not exist
            NotParticipant: requester is not a participant
        """
        conversation = self._get_conversation_for(requester_id, conversation_id, "get_messages")

        read_receipts_enabled = conversation.read_receipt_enabled
        messages = [
            message_out(
                message,
                message.sender,
                self.registry,
                viewer_id=requester_id,
                read_receipts_enabled=read_receipts_enabled
            )
            for message in self.repository.get_conversation_messages(conversation_id)
        ]

        marked = self.repository.mark_conversation_as_read(conversation_id, requester_id)
        if marked:
            messages_marked_read_total.labels(instance="api").inc(marked)
            logger.info(
                f"User {requester_id} read conversation {conversation_id} ({marked} messages)"
            )

        return messages

    def mute_conversation(
        self,
        user_id: int,
        conversation_id: int,
        duration_minutes: Optional[int] = None,
        muted: bool = True
    ) -> ConversationOut:
        """
        Mute a conversation for a duration (None = indefinitely), or unmute it.

        Raises:
            NotFound: conversation does not exist
            NotParticipant: user is not a participant
        """
        conversation = self._get_conversation_for(user_id, conversation_id, "mute")

        muted_until = None
        if muted and duration_minutes is not None:
            muted_until = datetime.utcnow() + timedelta(minutes=duration_minutes)

        conversation = self.repository.set_conversation_mute(conversation, muted, muted_until)
        logger.info(
            f"User {user_id} set mute={muted} on conversation {conversation_id} "
            f"(until={muted_until.isoformat() if muted_until else 'indefinite'})"
        )
        return conversation_out(conversation)

    def toggle_read_receipts(self, user_id: int, conversation_id: int) -> ConversationOut:
        """
        Flip the read-receipt flag of a conversation.

        Raises:
            NotFound: conversation does not exist
            NotParticipant: user is not a participant
        """
        conversation = self._get_conversation_for(user_id, conversation_id, "toggle_read_receipts")
        conversation = self.repository.toggle_read_receipts(conversation)
        logger.info(
            f"User {user_id} set read receipts to {conversation.read_receipt_enabled} "
            f"on conversation {conversation_id}"
        )
        return conversation_out(conversation)
