"""
Fee dashboard statistics.

Collection figures aggregate ``IncomeRecord`` rows directly. Outstanding figures
go through ``cached_outstanding_by_enrollment`` so dashboards and promotion agree on
what a student owes.
"""
import logging
from datetime import timedelta

from django.db.models import Count, Sum
from django.db.models.functions import Coalesce
from django.utils import timezone

from apps.core.students.models import Enrollment
from apps.core.utils.money import ZERO, quantize

from .models import IncomeRecord
from .services import cached_outstanding_by_enrollment

logger = logging.getLogger(__name__)


def _collected(queryset):
    return quantize(queryset.aggregate(total=Coalesce(Sum('paid_amount'), ZERO))['total'])


def get_collection_statistics(school, as_of=None):
    as_of = as_of or timezone.localdate()
    month_start = as_of.replace(day=1)
    income = IncomeRecord.objects.for_school(school)

    today = income.filter(created_at__date=as_of)
    this_month = income.filter(created_at__date__gte=month_start, created_at__date__lte=as_of)

    by_purpose = {}
    for row in this_month.values('purpose').annotate(total=Sum('paid_amount'), count=Count('id')).order_by('purpose'):
        by_purpose[row['purpose']] = {
            'total': quantize(row['total']),
            'count': row['count'],
        }

    by_method = {}
    for row in this_month.values('payment_method').annotate(total=Sum('paid_amount')).order_by('payment_method'):
        by_method[row['payment_method']] = quantize(row['total'])

    return {
        'as_of': as_of.isoformat(),
        'collected_today': _collected(today),
        'collected_this_month': _collected(this_month),
        'collected_last_7_days': _collected(income.filter(created_at__date__gt=as_of - timedelta(days=7))),
        'receipts_today': today.count(),
        'by_purpose': by_purpose,
        'by_payment_method': by_method,
    }


def get_outstanding_statistics(school, session=None, school_class=None):
    session = session or school.current_session
    enrollments = Enrollment.objects.for_school(school).filter(is_active=True)
    if session is not None:
        enrollments = enrollments.filter(session=session)
    if school_class is not None:
        enrollments = enrollments.filter(school_class=school_class)

    total = ZERO
    defaulters = 0
    by_class = {}
    rows = list(enrollments.values_list('id', 'school_class__name'))
    amounts = cached_outstanding_by_enrollment(school=school, enrollment_ids=[row[0] for row in rows])
    for enrollment_id, class_name in rows:
        outstanding = amounts.get(enrollment_id, ZERO)
        total += outstanding
        if outstanding > 0:
            defaulters += 1
        by_class[class_name] = quantize(by_class.get(class_name, ZERO) + outstanding)

    return {
        'session': session.name if session else None,
        'active_enrollments': len(rows),
        'students_with_dues': defaulters,
        'total_outstanding': quantize(total),
        'outstanding_by_class': by_class,
    }


def get_dashboard_statistics(school, session=None, as_of=None):
    stats = {
        'collections': get_collection_statistics(school, as_of=as_of),
        'outstanding': get_outstanding_statistics(school, session=session),
    }
    logger.debug('Computed fee dashboard for %s', school.code)
    return stats
