from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand

from trade_app.models import Trade

SAMPLE_TRADES = [
    ("Hoodie", "Green hoodie, size M. Looking for **books** in exchange."),
    ("Nintendo Switch", "Works fine, comes with:\n\n- dock\n- two joy-cons"),
    ("Landscape Painting", "Oil on canvas, 40x60 cm."),
]


class Command(BaseCommand):
    help = "Create a demo user with a few sample trades"

    def add_arguments(self, parser):
        parser.add_argument("--username", default="trader")
        parser.add_argument("--password", default="trader")

    def handle(self, *args, **options):
        User = get_user_model()
        user, created = User.objects.get_or_create(
            username=options["username"],
            defaults={"email": f"{options['username']}@example.com"},
        )
        if created:
            user.set_password(options["password"])
            user.save()

        made = 0
        for title, description in SAMPLE_TRADES:
            _, trade_created = Trade.objects.get_or_create(
                user=user, title=title, defaults={"description": description}
            )
            made += trade_created
        self.stdout.write(self.style.SUCCESS(f"Seeded {made} trade(s) for {user.username}"))
