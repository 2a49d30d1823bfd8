"""
LOGISTICS App - Celery Tasks

Broadcast fan-out, so a slow channel layer never blocks a ledger write.
"""

from celery import shared_task
import logging

logger = logging.getLogger(__name__)


@shared_task(name='logistics.tasks.broadcast_request_event')
def broadcast_request_event(request_id: str, event: str):
    """
    Publish the current snapshot of a request to its groups.

    The snapshot is read at publish time, so subscribers always receive
    the committed row, never the value the writer had in memory.
    """
    from logistics.events import publish_request_event
    from logistics.services.ledger import request_ledger

    record = request_ledger.snapshot(request_id)
    if record is None:
        logger.warning(f"[BROADCAST TASK] Request {request_id[:8]} not found, {event} dropped")
        return 0

    sent = publish_request_event(record, event)
    logger.info(f"[BROADCAST TASK] {event} {request_id[:8]} sent to {sent} groups")
    return sent
