"""
Management command to delete all conversations and messages.
Usage: python manage.py clear_all_chats
       python manage.py clear_all_chats --confirm (to skip confirmation)
"""
from django.core.management.base import BaseCommand
from django.db import transaction
from trade_app.models import Conversation, Message


class Command(BaseCommand):
    help = 'Delete all conversations and messages from the database'

    def add_arguments(self, parser):
        parser.add_argument(
            '--confirm',
            action='store_true',
            help='Skip confirmation prompt',
        )

    def handle(self, *args, **options):
        conversation_count = Conversation.objects.count()
        message_count = Message.objects.count()

        if conversation_count == 0:
            self.stdout.write(
                self.style.SUCCESS('No conversations found. Nothing to delete.')
            )
            return

        self.stdout.write(
            self.style.WARNING(
                f'\nThis will delete:\n'
                f'  - {conversation_count} conversation(s)\n'
                f'  - {message_count} message(s)\n'
            )
        )

        if not options['confirm']:
            confirm = input('Are you sure you want to delete all conversations and messages? (yes/no): ')
            if confirm.lower() not in ['yes', 'y']:
                self.stdout.write(self.style.ERROR('Operation cancelled.'))
                return

        # Messages go with their conversation
        with transaction.atomic():
            Conversation.objects.all().delete()

        self.stdout.write(
            self.style.SUCCESS(
                f'Deleted {conversation_count} conversation(s) and {message_count} message(s).'
            )
        )
