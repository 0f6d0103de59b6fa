import json
import logging
from functools import wraps

from django.core.exceptions import ValidationError
from django.http import JsonResponse

from apps.core.exceptions import (
    ConcessionLocked,
    ConcurrentUpdateConflict,
    LedgerError,
    LedgerValidationError,
    NotFound,
    PersistenceFailure,
    PromotionBlocked,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = (
    (NotFound, 404),
    (LedgerValidationError, 400),
    (ConcessionLocked, 409),
    (PromotionBlocked, 409),
    (ConcurrentUpdateConflict, 409),
    (PersistenceFailure, 503),
)


def envelope(data=None, *, status=200):
    return JsonResponse({'success': True, 'data': data, 'error': None}, status=status)


def error_envelope(error: LedgerError):
    status = 400
    for error_class, mapped_status in STATUS_BY_ERROR:
        if isinstance(error, error_class):
            status = mapped_status
            break
    return JsonResponse({'success': False, 'data': None, 'error': error.to_dict()}, status=status)


def form_error_envelope(form):
    error = LedgerValidationError(
        'Invalid request payload.',
        details={'field_errors': form.errors.get_json_data()},
    )
    return error_envelope(error)


def read_json(request):
    if not request.body:
        return {}
    try:
        payload = json.loads(request.body)
    except (TypeError, ValueError):
        raise LedgerValidationError('Request body must be valid JSON.') from None
    if not isinstance(payload, dict):
        raise LedgerValidationError('Request body must be a JSON object.')
    return payload


def ledger_view(view_func):
    """Render ledger and model validation failures through the shared envelope."""

    @wraps(view_func)
    def wrapper(request, *args, **kwargs):
        try:
            return view_func(request, *args, **kwargs)
        except LedgerError as error:
            logger.info('Ledger request %s %s failed: %s', request.method, request.path, error)
            return error_envelope(error)
        except ValidationError as error:
            return error_envelope(
                LedgerValidationError('; '.join(error.messages), details={'messages': error.messages})
            )

    return wrapper
