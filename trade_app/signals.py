from django.db import transaction
from django.db.models.signals import post_delete
from django.dispatch import receiver
import logging

from .models import TradeImage

logger = logging.getLogger(__name__)


@receiver(post_delete, sender=TradeImage)
def delete_trade_image_files(sender, instance, **kwargs):
    """
    Remove the stored file and its resized variants once the image row is
    gone, including when the whole trade is deleted. Files are only removed
    after the deleting transaction commits, so a rollback keeps them.
    """
    if not instance.image:
        return
    storage = instance.image.storage
    names = instance.variant_names() + [instance.image.name]
    trade_id = instance.trade_id

    def delete_files():
        for name in names:
            storage.delete(name)
        logger.info(f"Deleted stored image {names[-1]} for trade {trade_id}")

    transaction.on_commit(delete_files)
