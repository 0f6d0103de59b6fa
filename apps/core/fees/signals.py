import logging

from django.dispatch import Signal

from .models import IncomeRecord

logger = logging.getLogger(__name__)

# Sent after a payment batch commits. Receivers get ``school`` and ``records``.
payment_posted = Signal()


def dispatch_payment_posted(*, school, records):
    responses = payment_posted.send_robust(sender=IncomeRecord, school=school, records=records)
    for receiver, response in responses:
        if isinstance(response, Exception):
            # Receipt rendering must not undo a committed payment.
            logger.error(
                'payment_posted receiver %r failed for batch %s: %s',
                receiver,
                records[0].batch_id if records else None,
                response,
            )
    return responses
