"""
LOGISTICS App - Django Signals

Broadcast request inserts and model-level updates in real time.
Conditioned updates (claim, reopen) go through QuerySet.update(), which
does not fire post_save; the ledger publishes those itself.
"""

import logging
from django.db.models.signals import post_save
from django.dispatch import receiver

from logistics.events import EVENT_INSERT, EVENT_UPDATE, publish_request_change
from logistics.models import DeliveryRequest

logger = logging.getLogger(__name__)


@receiver(post_save, sender=DeliveryRequest)
def on_delivery_request_saved(sender, instance, created, raw=False, **kwargs):
    """Publish INSERT for new requests, UPDATE for saved edits."""
    if raw:
        # Fixture loading
        return

    event = EVENT_INSERT if created else EVENT_UPDATE
    logger.info(f"[SIGNAL] Request {str(instance.id)[:8]} saved ({event})")
    publish_request_change(instance.id, event)
