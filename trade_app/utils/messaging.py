# utils/messaging.py
from dataclasses import dataclass

from django.conf import settings
from django.contrib.auth.models import User
from django.db import IntegrityError, transaction
from django.db.models import Max, Q
from django.db.models.functions import Coalesce
import logging

from ..exceptions import AuthorizationError, NotFoundError, ValidationError
from ..models import MESSAGE_WINDOW_SIZE, Conversation, Message, pair_key_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MessageWindow:
    """Messages of a conversation, oldest first, plus whether older ones were cut"""
    messages: list
    truncated: bool
    total: int


def message_window_size():
    """Configured window size, never less than one message"""
    try:
        size = int(getattr(settings, "MESSAGE_WINDOW_SIZE", MESSAGE_WINDOW_SIZE))
    except (TypeError, ValueError):
        logger.warning("Invalid MESSAGE_WINDOW_SIZE setting, using default")
        size = MESSAGE_WINDOW_SIZE
    return max(size, 1)


def _get_user(user_id):
    try:
        return User.objects.get(pk=user_id)
    except (User.DoesNotExist, ValueError, TypeError):
        raise NotFoundError(f"User with ID {user_id} not found")


def _get_conversation(conversation_id):
    try:
        return Conversation.objects.select_related("sender", "recipient").get(pk=conversation_id)
    except (Conversation.DoesNotExist, ValueError, TypeError):
        raise NotFoundError(f"Conversation with ID {conversation_id} not found")


def find_or_create_conversation(sender_id, recipient_id):
    """
    Get the conversation between two users or create it on first contact.

    (A, B) and (B, A) resolve to the same conversation. A new conversation
    records `sender_id` as sender. When two first contacts race, the unique
    pair key rejects the second insert and the existing row is returned.

    Returns (conversation, created).
    """
    if not sender_id or not recipient_id:
        raise ValidationError("Both sender and recipient are required.")

    sender = _get_user(sender_id)
    recipient = _get_user(recipient_id)
    if sender.pk == recipient.pk:
        raise ValidationError("You cannot start a conversation with yourself.")

    key = pair_key_for(sender.pk, recipient.pk)
    existing = Conversation.objects.filter(pair_key=key).select_related("sender", "recipient").first()
    if existing:
        logger.info(f"Conversation {existing.id} retrieved for users {sender.pk} and {recipient.pk}")
        return existing, False

    try:
        with transaction.atomic():
            conversation = Conversation.objects.create(sender=sender, recipient=recipient)
    except IntegrityError:
        # Lost a race against a concurrent first contact
        conversation = Conversation.objects.select_related("sender", "recipient").get(pair_key=key)
        logger.info(
            f"Conversation {conversation.id} created concurrently for users {sender.pk} and {recipient.pk}"
        )
        return conversation, False

    logger.info(f"Conversation {conversation.id} created for users {sender.pk} and {recipient.pk}")
    return conversation, True


def list_conversations_for_user(user_id):
    """
    Every conversation the user takes part in, most recently active first.
    Participants are loaded with the conversations; each carries `last_activity`.
    """
    return (
        Conversation.objects.filter(Q(sender_id=user_id) | Q(recipient_id=user_id))
        .select_related("sender", "recipient")
        .annotate(last_activity=Coalesce(Max("messages__created_at"), "created_at"))
        .order_by("-last_activity", "-id")
    )


def append_message(conversation_id, author_id, body):
    """
    Add a message to a conversation. The author must be one of its two
    participants. Does not modify the conversation itself.
    """
    body = (body or "").strip()
    if not body:
        raise ValidationError({"body": "Message cannot be empty."})
    if not conversation_id or not author_id:
        raise ValidationError("Conversation and author are required.")

    conversation = _get_conversation(conversation_id)
    author = _get_user(author_id)
    if not conversation.has_participant(author):
        logger.warning(f"User {author.pk} tried to post in conversation {conversation.id}")
        raise AuthorizationError("You are not a participant in this conversation.")

    message = Message.objects.create(conversation=conversation, user=author, body=body)
    logger.info(f"Message {message.id} created in conversation {conversation.id}")
    return message


def list_messages(conversation_id, show_all=False):
    """
    Messages of a conversation, oldest to newest.

    Unless `show_all` is set, only the most recent `MESSAGE_WINDOW_SIZE`
    messages are returned and `truncated` tells whether older ones exist.
    """
    conversation = _get_conversation(conversation_id)
    messages = conversation.messages.select_related("user").order_by("created_at", "id")
    total = messages.count()
    window = message_window_size()

    if show_all or total <= window:
        return MessageWindow(messages=list(messages), truncated=False, total=total)

    latest = list(messages.order_by("-created_at", "-id")[:window])
    latest.reverse()
    return MessageWindow(messages=latest, truncated=True, total=total)
