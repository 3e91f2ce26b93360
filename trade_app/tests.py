import hashlib
import shutil
import tempfile
import threading
from io import BytesIO, StringIO
from unittest import mock

from django.contrib.auth.models import User
from django.core.files.storage import default_storage
from django.core.files.uploadedfile import SimpleUploadedFile
from django.core.management import call_command
from django.db import IntegrityError, connection, transaction
from django.test import Client, TestCase, TransactionTestCase, override_settings
from django.urls import reverse
from PIL import Image

from .exceptions import AuthorizationError, NotFoundError, ValidationError
from .models import Conversation, Message, Trade, TradeImage, pair_key_for, parse_size
from .utils.messaging import (
    append_message,
    find_or_create_conversation,
    list_conversations_for_user,
    list_messages,
)
from .utils.rendering import gravatar_url, is_trade_author, render_markdown

MEDIA_ROOT = tempfile.mkdtemp(prefix="trade_app_tests_")


def create_test_image(name="test.png", size=(100, 100), color="red"):
    """Helper function to create a test image file"""
    file = BytesIO()
    image = Image.new("RGB", size, color)
    image.save(file, "PNG")
    file.seek(0)
    return SimpleUploadedFile(name, file.read(), content_type="image/png")


def make_user(username, **extra):
    return User.objects.create_user(
        username=username,
        email=f"{username}@example.com",
        password="testpass123",
        **extra,
    )


@override_settings(MEDIA_ROOT=MEDIA_ROOT)
class MediaTestCase(TestCase):
    """Keeps uploaded files out of the project's media directory"""

    @classmethod
    def tearDownClass(cls):
        shutil.rmtree(MEDIA_ROOT, ignore_errors=True)
        super().tearDownClass()


class ConversationRegistryTests(TestCase):
    """Tests for find_or_create_conversation and list_conversations_for_user"""

    def setUp(self):
        self.user1 = make_user("user1", first_name="User", last_name="One")
        self.user2 = make_user("user2", first_name="User", last_name="Two")
        self.user3 = make_user("user3")

    def test_find_or_create_creates_new_conversation(self):
        conversation, created = find_or_create_conversation(self.user1.id, self.user2.id)

        self.assertTrue(created)
        self.assertEqual(conversation.sender, self.user1)
        self.assertEqual(conversation.recipient, self.user2)
        self.assertEqual(Conversation.objects.count(), 1)

    def test_find_or_create_returns_same_conversation_for_swapped_pair(self):
        conv1, created1 = find_or_create_conversation(self.user1.id, self.user2.id)
        conv2, created2 = find_or_create_conversation(self.user2.id, self.user1.id)

        self.assertTrue(created1)
        self.assertFalse(created2)
        self.assertEqual(conv1.id, conv2.id)
        # The original direction is kept
        self.assertEqual(conv2.sender, self.user1)
        self.assertEqual(Conversation.objects.count(), 1)

    def test_first_contact_scenario_with_fixed_ids(self):
        """Users 5 and 9: (5, 9) creates C1, (9, 5) returns C1"""
        user5 = User.objects.create_user(id=5, username="five", password="pass123")
        user9 = User.objects.create_user(id=9, username="nine", password="pass123")

        c1, created = find_or_create_conversation(5, 9)
        self.assertTrue(created)
        self.assertEqual(c1.sender_id, 5)
        self.assertEqual(c1.recipient_id, 9)
        self.assertEqual(c1.pair_key, "5:9")

        again, created = find_or_create_conversation(9, 5)
        self.assertFalse(created)
        self.assertEqual(again.id, c1.id)
        self.assertEqual(again.other_participant(user9), user5)

    def test_cannot_start_conversation_with_self(self):
        with self.assertRaises(ValidationError):
            find_or_create_conversation(self.user1.id, self.user1.id)
        self.assertEqual(Conversation.objects.count(), 0)

    def test_missing_ids_raise_validation_error(self):
        with self.assertRaises(ValidationError):
            find_or_create_conversation(self.user1.id, None)
        with self.assertRaises(ValidationError):
            find_or_create_conversation("", self.user2.id)

    def test_unknown_user_raises_not_found(self):
        with self.assertRaises(NotFoundError):
            find_or_create_conversation(self.user1.id, 99999)
        with self.assertRaises(NotFoundError):
            find_or_create_conversation(self.user1.id, "abc")
        self.assertEqual(Conversation.objects.count(), 0)

    def test_database_rejects_duplicate_unordered_pair(self):
        Conversation.objects.create(sender=self.user1, recipient=self.user2)

        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Conversation.objects.create(sender=self.user2, recipient=self.user1)
        self.assertEqual(Conversation.objects.count(), 1)

    def test_database_rejects_conversation_with_self(self):
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Conversation.objects.create(sender=self.user1, recipient=self.user1)

    def test_concurrent_first_contact_returns_existing_conversation(self):
        """A first contact that loses the insert race returns the winner's row"""
        winner = Conversation.objects.create(sender=self.user2, recipient=self.user1)

        # Simulate the lookup running before the concurrent insert was visible
        stale_lookup = mock.MagicMock()
        stale_lookup.select_related.return_value.first.return_value = None
        with mock.patch.object(Conversation.objects, "filter", return_value=stale_lookup):
            conversation, created = find_or_create_conversation(self.user1.id, self.user2.id)

        self.assertFalse(created)
        self.assertEqual(conversation.id, winner.id)
        self.assertEqual(Conversation.objects.count(), 1)

    def test_pair_key_is_order_independent(self):
        self.assertEqual(pair_key_for(9, 5), "5:9")
        self.assertEqual(pair_key_for(5, 9), pair_key_for(9, 5))
        self.assertEqual(pair_key_for("10", 2), "2:10")

    def test_list_conversations_for_user(self):
        conv_a, _ = find_or_create_conversation(self.user1.id, self.user2.id)
        conv_b, _ = find_or_create_conversation(self.user3.id, self.user1.id)
        find_or_create_conversation(self.user2.id, self.user3.id)

        conversations = list(list_conversations_for_user(self.user1.id))

        self.assertEqual({c.id for c in conversations}, {conv_a.id, conv_b.id})

    def test_list_conversations_orders_by_latest_activity(self):
        conv_a, _ = find_or_create_conversation(self.user1.id, self.user2.id)
        conv_b, _ = find_or_create_conversation(self.user1.id, self.user3.id)

        # Newest conversation first when neither has messages
        ids = [c.id for c in list_conversations_for_user(self.user1.id)]
        self.assertEqual(ids, [conv_b.id, conv_a.id])

        append_message(conv_a.id, self.user2.id, "Still interested?")
        ids = [c.id for c in list_conversations_for_user(self.user1.id)]
        self.assertEqual(ids, [conv_a.id, conv_b.id])

    def test_list_conversations_hydrates_participants(self):
        find_or_create_conversation(self.user1.id, self.user2.id)

        with self.assertNumQueries(1):
            conversations = list(list_conversations_for_user(self.user1.id))
            other = conversations[0].other_participant(self.user1)
            self.assertEqual(other.username, "user2")

    def test_other_participant(self):
        conversation, _ = find_or_create_conversation(self.user1.id, self.user2.id)

        self.assertEqual(conversation.other_participant(self.user1), self.user2)
        self.assertEqual(conversation.other_participant(self.user2), self.user1)
        self.assertIsNone(conversation.other_participant(self.user3))


class ConcurrentFirstContactTests(TransactionTestCase):
    """Simultaneous first contacts between the same two users"""

    THREADS = 8

    def test_simultaneous_first_contacts_create_one_conversation(self):
        user_a = make_user("alice")
        user_b = make_user("bob")
        barrier = threading.Barrier(self.THREADS)
        ids = []
        errors = []
        lock = threading.Lock()

        def first_contact(sender, recipient):
            try:
                barrier.wait()
                conversation, _ = find_or_create_conversation(sender.id, recipient.id)
                with lock:
                    ids.append(conversation.id)
            except Exception as e:
                with lock:
                    errors.append(e)
            finally:
                connection.close()

        threads = [
            threading.Thread(
                target=first_contact,
                args=(user_a, user_b) if i % 2 else (user_b, user_a),
            )
            for i in range(self.THREADS)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        self.assertEqual(len(ids), self.THREADS)
        self.assertEqual(len(set(ids)), 1)
        self.assertEqual(Conversation.objects.count(), 1)


class MessageFeedTests(TestCase):
    """Tests for append_message and list_messages"""

    def setUp(self):
        self.user1 = make_user("user1")
        self.user2 = make_user("user2")
        self.user3 = make_user("user3")
        self.conversation, _ = find_or_create_conversation(self.user1.id, self.user2.id)

    def _append_many(self, count):
        return [
            append_message(
                self.conversation.id,
                self.user1.id if i % 2 else self.user2.id,
                f"Message {i}",
            )
            for i in range(1, count + 1)
        ]

    def test_append_message_creates_message(self):
        message = append_message(self.conversation.id, self.user1.id, "  Hello there!  ")

        self.assertEqual(message.body, "Hello there!")
        self.assertEqual(message.user, self.user1)
        self.assertEqual(message.conversation, self.conversation)
        self.assertIsNotNone(message.created_at)
        self.assertEqual(Message.objects.count(), 1)

    def test_empty_body_is_rejected(self):
        for body in ["", "   ", "\n\t", None]:
            with self.assertRaises(ValidationError):
                append_message(self.conversation.id, self.user1.id, body)
        self.assertEqual(Message.objects.count(), 0)

    def test_missing_references_are_rejected(self):
        with self.assertRaises(ValidationError):
            append_message(None, self.user1.id, "Hi")
        with self.assertRaises(ValidationError):
            append_message(self.conversation.id, None, "Hi")
        self.assertEqual(Message.objects.count(), 0)

    def test_unknown_conversation_raises_not_found(self):
        with self.assertRaises(NotFoundError):
            append_message(99999, self.user1.id, "Hi")
        with self.assertRaises(NotFoundError):
            list_messages(99999)

    def test_unknown_author_raises_not_found(self):
        with self.assertRaises(NotFoundError):
            append_message(self.conversation.id, 99999, "Hi")

    def test_non_participant_cannot_post(self):
        with self.assertRaises(AuthorizationError):
            append_message(self.conversation.id, self.user3.id, "Let me in")
        self.assertEqual(Message.objects.count(), 0)

    def test_append_does_not_modify_conversation(self):
        before = Conversation.objects.values().get(pk=self.conversation.pk)
        append_message(self.conversation.id, self.user2.id, "Hi")
        after = Conversation.objects.values().get(pk=self.conversation.pk)
        self.assertEqual(before, after)

    def test_list_returns_last_ten_of_eleven(self):
        sent = self._append_many(11)

        window = list_messages(self.conversation.id)

        self.assertEqual([m.id for m in window.messages], [m.id for m in sent[1:]])
        self.assertTrue(window.truncated)
        self.assertEqual(window.total, 11)

    def test_list_show_all_returns_everything_in_order(self):
        sent = self._append_many(11)

        window = list_messages(self.conversation.id, show_all=True)

        self.assertEqual([m.id for m in window.messages], [m.id for m in sent])
        self.assertFalse(window.truncated)

    def test_list_short_conversation_is_not_truncated(self):
        sent = self._append_many(3)

        window = list_messages(self.conversation.id)

        self.assertEqual([m.body for m in window.messages], [m.body for m in sent])
        self.assertFalse(window.truncated)
        self.assertEqual(window.total, 3)

    def test_list_exactly_ten_is_not_truncated(self):
        self._append_many(10)

        window = list_messages(self.conversation.id)

        self.assertEqual(len(window.messages), 10)
        self.assertFalse(window.truncated)

    def test_list_empty_conversation(self):
        window = list_messages(self.conversation.id)

        self.assertEqual(window.messages, [])
        self.assertFalse(window.truncated)
        self.assertEqual(window.total, 0)

    @override_settings(MESSAGE_WINDOW_SIZE=3)
    def test_window_size_is_configurable(self):
        sent = self._append_many(5)

        window = list_messages(self.conversation.id)

        self.assertEqual([m.id for m in window.messages], [m.id for m in sent[2:]])
        self.assertTrue(window.truncated)

    def test_zero_or_negative_window_size_shows_latest_message(self):
        sent = self._append_many(2)

        for size in (0, -5):
            with self.subTest(size=size), override_settings(MESSAGE_WINDOW_SIZE=size):
                window = list_messages(self.conversation.id)

                self.assertEqual([m.id for m in window.messages], [sent[-1].id])
                self.assertTrue(window.truncated)
                self.assertEqual(window.total, 2)

    @override_settings(MESSAGE_WINDOW_SIZE="lots")
    def test_invalid_window_size_uses_default(self):
        self._append_many(11)

        window = list_messages(self.conversation.id)

        self.assertEqual(len(window.messages), 10)
        self.assertTrue(window.truncated)

    def test_list_is_repeatable(self):
        self._append_many(12)

        first = list_messages(self.conversation.id)
        second = list_messages(self.conversation.id)

        self.assertEqual(first, second)
        self.assertEqual(Message.objects.count(), 12)


class TradeModelTests(MediaTestCase):
    """Tests for Trade and TradeImage"""

    def setUp(self):
        self.user = make_user("owner")
        self.trade = Trade.objects.create(title="Bike", description="Red bike", user=self.user)

    def test_trade_str_representation(self):
        self.assertEqual(str(self.trade), "Bike")

    def test_images_are_ordered(self):
        second = TradeImage.objects.create(trade=self.trade, image=create_test_image("b.png"), order=1)
        first = TradeImage.objects.create(trade=self.trade, image=create_test_image("a.png"), order=0)

        self.assertEqual(list(self.trade.images.all()), [first, second])
        self.assertEqual(self.trade.primary_image, first)

    def test_primary_image_is_none_without_images(self):
        self.assertIsNone(self.trade.primary_image)

    def test_variant_resizes_within_bounds(self):
        trade_image = TradeImage.objects.create(
            trade=self.trade, image=create_test_image("big.png", size=(800, 600))
        )

        url = trade_image.variant("640x480")

        name = trade_image.variant_name("640x480")
        self.assertTrue(url.endswith(name))
        with default_storage.open(name, "rb") as f:
            with Image.open(f) as resized:
                self.assertEqual(resized.size, (640, 480))
        self.assertEqual(trade_image.variant_names(), [name])

    def test_parse_size_rejects_bad_descriptors(self):
        self.assertEqual(parse_size("640x480"), (640, 480))
        for bad in ["640", "axb", "0x10", None]:
            with self.assertRaises(ValueError):
                parse_size(bad)

    def test_deleting_trade_removes_images_and_files(self):
        trade_image = TradeImage.objects.create(trade=self.trade, image=create_test_image("gone.png"))
        trade_image.variant("64x64")
        original = trade_image.image.name
        variant = trade_image.variant_name("64x64")
        self.assertTrue(default_storage.exists(original))

        with self.captureOnCommitCallbacks(execute=True):
            self.trade.delete()

        self.assertEqual(TradeImage.objects.count(), 0)
        self.assertFalse(default_storage.exists(original))
        self.assertFalse(default_storage.exists(variant))

    def test_rolled_back_trade_delete_keeps_files(self):
        trade_image = TradeImage.objects.create(trade=self.trade, image=create_test_image("kept.png"))
        stored_name = trade_image.image.name

        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            with self.assertRaises(RuntimeError):
                with transaction.atomic():
                    self.trade.delete()
                    raise RuntimeError("abort")

        self.assertEqual(callbacks, [])
        self.assertTrue(TradeImage.objects.filter(pk=trade_image.pk).exists())
        self.assertTrue(default_storage.exists(stored_name))

    def test_rolled_back_delete_leaves_detail_page_working(self):
        TradeImage.objects.create(trade=self.trade, image=create_test_image("still.png"))

        with self.assertRaises(RuntimeError):
            with transaction.atomic():
                self.trade.delete()
                raise RuntimeError("abort")

        response = self.client.get(reverse("trade_app:trade_detail", args=[self.trade.id]))
        self.assertEqual(response.status_code, 200)

    def test_variant_falls_back_to_original_url_when_file_is_missing(self):
        trade_image = TradeImage.objects.create(trade=self.trade, image=create_test_image("lost.png"))
        default_storage.delete(trade_image.image.name)

        self.assertEqual(trade_image.variant("640x480"), trade_image.image.url)
        self.assertFalse(default_storage.exists(trade_image.variant_name("640x480")))


class RenderingTests(TestCase):
    """Tests for markdown, gravatar and authorship helpers"""

    def test_markdown_renders_basic_formatting(self):
        html = render_markdown("**bold** and ~~gone~~")
        self.assertIn("<strong>bold</strong>", html)
        self.assertIn("<s>gone</s>", html)

    def test_markdown_escapes_raw_html(self):
        html = render_markdown("<script>alert('x')</script>")
        self.assertNotIn("<script>", html)
        self.assertIn("&lt;script&gt;", html)

    def test_markdown_empty_text(self):
        self.assertEqual(render_markdown(""), "")
        self.assertEqual(render_markdown(None), "")

    def test_gravatar_url_uses_lowercased_email_hash(self):
        expected = hashlib.md5(b"someone@example.com").hexdigest()
        self.assertEqual(
            gravatar_url("  SomeOne@Example.com ", 80),
            f"https://secure.gravatar.com/avatar/{expected}?s=80",
        )
        self.assertTrue(gravatar_url("someone@example.com").endswith("?s=200"))

    def test_is_trade_author(self):
        owner = make_user("owner")
        other = make_user("other")
        trade = Trade.objects.create(title="Lamp", user=owner)

        self.assertTrue(is_trade_author(owner, trade))
        self.assertFalse(is_trade_author(other, trade))
        self.assertFalse(is_trade_author(None, trade))


class TradeViewTests(MediaTestCase):
    """Tests for creating, showing, editing and deleting trades"""

    def setUp(self):
        self.client = Client()
        self.owner = make_user("owner", first_name="Test", last_name="Owner")
        self.other_user = make_user("other")
        self.trade = Trade.objects.create(
            title="Guitar", description="Acoustic, *barely used*", user=self.owner
        )

    def test_trade_list_is_public(self):
        response = self.client.get(reverse("trade_app:home"))

        self.assertEqual(response.status_code, 200)
        self.assertTemplateUsed(response, "trades/index.html")
        self.assertContains(response, "Guitar")

    def test_trade_detail_renders_markdown(self):
        response = self.client.get(reverse("trade_app:trade_detail", args=[self.trade.id]))

        self.assertEqual(response.status_code, 200)
        self.assertContains(response, "<em>barely used</em>", html=False)
        self.assertFalse(response.context["is_author"])

    def test_trade_detail_shows_resized_images(self):
        trade_image = TradeImage.objects.create(
            trade=self.trade, image=create_test_image("guitar.png", size=(1000, 500))
        )

        response = self.client.get(reverse("trade_app:trade_detail", args=[self.trade.id]))

        self.assertContains(response, trade_image.variant_name("640x480"))
        self.assertTrue(default_storage.exists(trade_image.variant_name("640x480")))

    def test_trade_detail_escapes_html_in_description(self):
        self.trade.description = "<script>alert(1)</script>"
        self.trade.save()

        response = self.client.get(reverse("trade_app:trade_detail", args=[self.trade.id]))

        self.assertNotContains(response, "<script>alert(1)</script>", html=False)

    def test_add_trade_requires_login(self):
        response = self.client.get(reverse("trade_app:add_trade"))

        self.assertEqual(response.status_code, 302)
        self.assertIn("login", response.url.lower())

    def test_create_trade_with_images(self):
        self.client.login(username="other", password="testpass123")
        images = [create_test_image(f"trade{i}.png") for i in range(3)]

        response = self.client.post(
            reverse("trade_app:add_trade"),
            {"title": "Camera", "description": "Digital camera", "images": images},
        )

        trade = Trade.objects.get(title="Camera")
        self.assertRedirects(response, reverse("trade_app:trade_detail", args=[trade.id]))
        self.assertEqual(trade.user, self.other_user)
        self.assertEqual([img.order for img in trade.images.all()], [0, 1, 2])

    def test_create_trade_requires_title(self):
        self.client.login(username="other", password="testpass123")

        response = self.client.post(reverse("trade_app:add_trade"), {"title": "", "description": "x"})

        self.assertEqual(response.status_code, 200)
        self.assertIn("title", response.context["form"].errors)
        self.assertEqual(Trade.objects.count(), 1)

    def test_create_trade_rejects_more_than_five_images(self):
        self.client.login(username="other", password="testpass123")
        images = [create_test_image(f"trade{i}.png") for i in range(6)]

        response = self.client.post(
            reverse("trade_app:add_trade"),
            {"title": "Phone", "description": "Smartphone", "images": images},
        )

        self.assertEqual(response.status_code, 200)
        self.assertIn("images", response.context["form"].errors)
        self.assertFalse(Trade.objects.filter(title="Phone").exists())

    def test_owner_can_edit_trade(self):
        self.client.login(username="owner", password="testpass123")

        response = self.client.post(
            reverse("trade_app:edit_trade", args=[self.trade.id]),
            {"title": "Electric Guitar", "description": "Now electric"},
        )

        self.assertRedirects(response, reverse("trade_app:trade_detail", args=[self.trade.id]))
        self.trade.refresh_from_db()
        self.assertEqual(self.trade.title, "Electric Guitar")

    def test_edit_appends_images_after_existing_ones(self):
        TradeImage.objects.create(trade=self.trade, image=create_test_image("first.png"), order=0)
        self.client.login(username="owner", password="testpass123")

        self.client.post(
            reverse("trade_app:edit_trade", args=[self.trade.id]),
            {"title": "Guitar", "description": "", "images": [create_test_image("second.png")]},
        )

        self.assertEqual([img.order for img in self.trade.images.all()], [0, 1])

    def test_non_owner_cannot_edit_trade(self):
        self.client.login(username="other", password="testpass123")

        response = self.client.post(
            reverse("trade_app:edit_trade", args=[self.trade.id]),
            {"title": "Stolen", "description": ""},
            follow=True,
        )

        self.trade.refresh_from_db()
        self.assertEqual(self.trade.title, "Guitar")
        messages_list = list(response.context.get("messages", []))
        self.assertTrue(any("not authorized" in str(m).lower() for m in messages_list))

    def test_delete_trade_success_by_owner(self):
        trade_image = TradeImage.objects.create(trade=self.trade, image=create_test_image("pic.png"))
        stored_name = trade_image.image.name
        self.client.login(username="owner", password="testpass123")

        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.post(reverse("trade_app:delete_trade", args=[self.trade.id]), follow=True)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(Trade.objects.count(), 0)
        self.assertEqual(TradeImage.objects.count(), 0)
        self.assertFalse(default_storage.exists(stored_name))

    def test_delete_trade_denied_for_non_owner(self):
        self.client.login(username="other", password="testpass123")

        response = self.client.post(reverse("trade_app:delete_trade", args=[self.trade.id]), follow=True)

        self.assertEqual(Trade.objects.count(), 1)
        messages_list = list(response.context.get("messages", []))
        self.assertTrue(any("not authorized" in str(m).lower() for m in messages_list))

    def test_delete_trade_requires_post(self):
        self.client.login(username="owner", password="testpass123")

        response = self.client.get(reverse("trade_app:delete_trade", args=[self.trade.id]))

        self.assertEqual(response.status_code, 405)
        self.assertEqual(Trade.objects.count(), 1)

    def test_delete_nonexistent_trade_returns_404(self):
        self.client.login(username="owner", password="testpass123")

        response = self.client.post(reverse("trade_app:delete_trade", args=[99999]))

        self.assertEqual(response.status_code, 404)


class MessagingViewTests(TestCase):
    """Tests for the conversation and message views"""

    def setUp(self):
        self.client = Client()
        self.user1 = make_user("user1", first_name="User", last_name="One")
        self.user2 = make_user("user2", first_name="User", last_name="Two")
        self.user3 = make_user("user3")

    def test_conversations_page_requires_login(self):
        response = self.client.get(reverse("trade_app:conversations"))

        self.assertEqual(response.status_code, 302)
        self.assertIn("login", response.url.lower())

    def test_conversations_page_lists_user_conversations(self):
        find_or_create_conversation(self.user2.id, self.user1.id)
        find_or_create_conversation(self.user2.id, self.user3.id)
        self.client.login(username="user1", password="testpass123")

        response = self.client.get(reverse("trade_app:conversations"))

        self.assertEqual(response.status_code, 200)
        self.assertTemplateUsed(response, "conversations/index.html")
        conversations = response.context["conversations"]
        self.assertEqual(len(conversations), 1)
        self.assertEqual(conversations[0]["other_participant"], self.user2)

    def test_start_conversation_creates_and_redirects(self):
        self.client.login(username="user1", password="testpass123")

        response = self.client.post(reverse("trade_app:conversations"), {"recipient_id": self.user2.id})

        conversation = Conversation.objects.get()
        self.assertRedirects(
            response, reverse("trade_app:conversation_messages", args=[conversation.id])
        )
        self.assertEqual(conversation.sender, self.user1)
        self.assertEqual(conversation.recipient, self.user2)

    def test_start_conversation_reuses_existing_from_either_side(self):
        self.client.login(username="user1", password="testpass123")
        self.client.post(reverse("trade_app:conversations"), {"recipient_id": self.user2.id})
        self.client.logout()

        self.client.login(username="user2", password="testpass123")
        self.client.post(reverse("trade_app:conversations"), {"recipient_id": self.user1.id})

        self.assertEqual(Conversation.objects.count(), 1)

    def test_cannot_start_conversation_with_self(self):
        self.client.login(username="user1", password="testpass123")

        response = self.client.post(
            reverse("trade_app:conversations"), {"recipient_id": self.user1.id}, follow=True
        )

        self.assertEqual(Conversation.objects.count(), 0)
        messages_list = list(response.context.get("messages", []))
        self.assertTrue(any("yourself" in str(m).lower() for m in messages_list))

    def test_start_conversation_with_unknown_user_returns_404(self):
        self.client.login(username="user1", password="testpass123")

        response = self.client.post(reverse("trade_app:conversations"), {"recipient_id": 99999})

        self.assertEqual(response.status_code, 404)

    def test_send_message_in_conversation(self):
        conversation, _ = find_or_create_conversation(self.user1.id, self.user2.id)
        self.client.login(username="user1", password="testpass123")
        url = reverse("trade_app:conversation_messages", args=[conversation.id])

        response = self.client.post(url, {"body": "Hello, is this still available?"}, follow=True)

        self.assertEqual(response.status_code, 200)
        message = Message.objects.get()
        self.assertEqual(message.body, "Hello, is this still available?")
        self.assertEqual(message.user, self.user1)
        self.assertEqual(message.conversation, conversation)

    def test_cannot_send_empty_message(self):
        conversation, _ = find_or_create_conversation(self.user1.id, self.user2.id)
        self.client.login(username="user1", password="testpass123")
        url = reverse("trade_app:conversation_messages", args=[conversation.id])

        response = self.client.post(url, {"body": "   "}, follow=True)

        self.assertEqual(Message.objects.count(), 0)
        messages_list = list(response.context.get("messages", []))
        self.assertTrue(any("empty" in str(m).lower() for m in messages_list))

    def test_send_message_via_ajax_returns_json(self):
        conversation, _ = find_or_create_conversation(self.user1.id, self.user2.id)
        self.client.login(username="user2", password="testpass123")
        url = reverse("trade_app:conversation_messages", args=[conversation.id])

        response = self.client.post(url, {"body": "**Yes**"}, HTTP_X_REQUESTED_WITH="XMLHttpRequest")

        data = response.json()
        self.assertTrue(data["success"])
        self.assertEqual(data["message"]["body"], "**Yes**")
        self.assertIn("<strong>Yes</strong>", data["message"]["body_html"])
        self.assertEqual(data["message"]["user"], "user2")

    def test_empty_message_via_ajax_returns_error(self):
        conversation, _ = find_or_create_conversation(self.user1.id, self.user2.id)
        self.client.login(username="user2", password="testpass123")
        url = reverse("trade_app:conversation_messages", args=[conversation.id])

        response = self.client.post(url, {"body": ""}, HTTP_X_REQUESTED_WITH="XMLHttpRequest")

        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.json()["success"])

    def test_non_participant_cannot_view_or_post(self):
        conversation, _ = find_or_create_conversation(self.user1.id, self.user2.id)
        self.client.login(username="user3", password="testpass123")
        url = reverse("trade_app:conversation_messages", args=[conversation.id])

        response = self.client.get(url)
        self.assertRedirects(response, reverse("trade_app:conversations"))

        self.client.post(url, {"body": "Intruding"})
        self.assertEqual(Message.objects.count(), 0)

    def test_message_list_shows_latest_window(self):
        conversation, _ = find_or_create_conversation(self.user1.id, self.user2.id)
        for i in range(11):
            append_message(conversation.id, self.user1.id, f"Message {i}")
        self.client.login(username="user2", password="testpass123")
        url = reverse("trade_app:conversation_messages", args=[conversation.id])

        response = self.client.get(url)

        self.assertEqual(response.status_code, 200)
        self.assertTemplateUsed(response, "conversations/messages.html")
        self.assertEqual(len(response.context["messages_list"]), 10)
        self.assertTrue(response.context["truncated"])
        self.assertEqual(response.context["messages_list"][0].body, "Message 1")
        self.assertContains(response, "?m=all")

    def test_message_list_show_all_flag(self):
        conversation, _ = find_or_create_conversation(self.user1.id, self.user2.id)
        for i in range(11):
            append_message(conversation.id, self.user2.id, f"Message {i}")
        self.client.login(username="user1", password="testpass123")
        url = reverse("trade_app:conversation_messages", args=[conversation.id])

        response = self.client.get(url, {"m": "all"})

        self.assertEqual(len(response.context["messages_list"]), 11)
        self.assertFalse(response.context["truncated"])
        self.assertEqual(response.context["other_participant"], self.user2)


class ClearAllChatsCommandTests(TestCase):
    """Tests for the clear_all_chats management command"""

    def test_clear_all_chats_with_confirm(self):
        user1 = make_user("user1")
        user2 = make_user("user2")
        conversation, _ = find_or_create_conversation(user1.id, user2.id)
        append_message(conversation.id, user1.id, "Hi")
        out = StringIO()

        call_command("clear_all_chats", "--confirm", stdout=out)

        self.assertEqual(Conversation.objects.count(), 0)
        self.assertEqual(Message.objects.count(), 0)
        self.assertIn("Deleted 1 conversation(s) and 1 message(s)", out.getvalue())

    def test_clear_all_chats_with_nothing_to_delete(self):
        out = StringIO()

        call_command("clear_all_chats", "--confirm", stdout=out)

        self.assertIn("Nothing to delete", out.getvalue())

    def test_seed_trades_is_idempotent(self):
        call_command("seed_trades", stdout=StringIO())
        call_command("seed_trades", stdout=StringIO())

        self.assertEqual(Trade.objects.filter(user__username="trader").count(), 3)
