import logging
import os
from io import BytesIO

from django.contrib.auth.models import User
from django.core.files.base import ContentFile
from django.db import models
from django.db.models import F, Q
from PIL import Image

logger = logging.getLogger(__name__)


# Messages shown by default in a conversation; override with settings.MESSAGE_WINDOW_SIZE
MESSAGE_WINDOW_SIZE = 10


def pair_key_for(user_a_id, user_b_id):
    """Canonical key for an unordered pair of user ids ("<min>:<max>")."""
    low, high = sorted((int(user_a_id), int(user_b_id)))
    return f"{low}:{high}"


def parse_size(size):
    """Parse a "WIDTHxHEIGHT" descriptor into a tuple of ints."""
    try:
        width, height = (int(part) for part in size.lower().split("x"))
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid size descriptor: {size!r}")
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid size descriptor: {size!r}")
    return width, height


class Trade(models.Model):
    title = models.CharField(max_length=120)
    description = models.TextField(default="", blank=True)
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="trades")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return self.title

    @property
    def primary_image(self):
        """First attached image, or None when the trade has no images"""
        return self.images.first()


class TradeImage(models.Model):
    """An image attached to a trade; deleted along with it"""
    trade = models.ForeignKey(Trade, on_delete=models.CASCADE, related_name="images")
    image = models.ImageField(upload_to="uploads/trades/")
    order = models.IntegerField(default=0, help_text="Order of image display (0 = primary)")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["order", "created_at"]
        verbose_name = "Trade Image"
        verbose_name_plural = "Trade Images"

    def __str__(self):
        return f"Image {self.order} for {self.trade.title}"

    def variant_name(self, size):
        width, height = parse_size(size)
        directory, filename = os.path.split(self.image.name)
        return os.path.join(directory, "variants", f"{width}x{height}", filename)

    def variant(self, size):
        """
        Return the URL of a copy of this image resized to fit inside `size`
        (e.g. "640x480"). The copy is generated on first request and kept in
        storage next to the original. Falls back to the original's URL when
        the stored original is missing.
        """
        storage = self.image.storage
        name = self.variant_name(size)
        if not storage.exists(name):
            buffer = BytesIO()
            try:
                with storage.open(self.image.name, "rb") as source, Image.open(source) as original:
                    fmt = original.format or "PNG"
                    resized = original.copy()
                    resized.thumbnail(parse_size(size))
                    resized.save(buffer, fmt)
            except FileNotFoundError:
                logger.warning(f"Stored image {self.image.name} missing for trade {self.trade_id}")
                return self.image.url
            name = storage.save(name, ContentFile(buffer.getvalue()))
        return storage.url(name)

    def variant_names(self):
        """Stored resized copies of this image"""
        directory, filename = os.path.split(self.image.name)
        variants_dir = os.path.join(directory, "variants")
        try:
            size_dirs, _ = self.image.storage.listdir(variants_dir)
        except FileNotFoundError:
            return []
        names = [os.path.join(variants_dir, size_dir, filename) for size_dir in size_dirs]
        return [name for name in names if self.image.storage.exists(name)]


class Conversation(models.Model):
    """
    Private conversation between two users.

    Identity is the unordered pair of participants: `pair_key` holds the
    canonical "<min_id>:<max_id>" form and is unique in the database, so
    (A, B) and (B, A) can never both exist.
    """
    sender = models.ForeignKey(User, on_delete=models.CASCADE, related_name="sent_conversations")
    recipient = models.ForeignKey(User, on_delete=models.CASCADE, related_name="received_conversations")
    pair_key = models.CharField(max_length=64, unique=True, editable=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        constraints = [
            models.CheckConstraint(
                condition=~Q(sender=F("recipient")),
                name="conversation_distinct_participants",
            ),
        ]

    def __str__(self):
        return f"Conversation between {display_name(self.sender)} and {display_name(self.recipient)}"

    def save(self, *args, **kwargs):
        if self.sender_id is not None and self.recipient_id is not None:
            self.pair_key = pair_key_for(self.sender_id, self.recipient_id)
        super().save(*args, **kwargs)

    def has_participant(self, user):
        user_id = getattr(user, "pk", user)
        return user_id in (self.sender_id, self.recipient_id)

    def other_participant(self, user):
        """Get the other participant in the conversation"""
        user_id = getattr(user, "pk", user)
        if user_id == self.sender_id:
            return self.recipient
        if user_id == self.recipient_id:
            return self.sender
        return None

    def get_latest_message(self):
        return self.messages.last()


class Message(models.Model):
    """A single authored entry in a conversation"""
    conversation = models.ForeignKey(Conversation, on_delete=models.CASCADE, related_name="messages")
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="messages")
    body = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self):
        return f"Message from {display_name(self.user)} in conversation {self.conversation_id}"


def display_name(user):
    return user.get_full_name() or user.username
