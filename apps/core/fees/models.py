from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from apps.core.academic_sessions.models import AcademicSession
from apps.core.schools.models import School
from apps.core.students.models import Enrollment
from apps.core.utils.managers import SchoolManager
from apps.core.utils.money import ZERO, non_negative, to_decimal


STATUS_PAID = 'PAID'
STATUS_PARTIAL = 'PARTIAL'
STATUS_PENDING = 'PENDING'


def slot_status(amount, paid):
    """Return ``(balance, status)`` for one term or the book fee."""
    balance = non_negative(to_decimal(amount) - to_decimal(paid))
    if balance == 0:
        return balance, STATUS_PAID
    if to_decimal(paid) > 0:
        return balance, STATUS_PARTIAL
    return balance, STATUS_PENDING


class FinancialRecordModel(models.Model):
    class Meta:
        abstract = True

    def delete(self, *args, **kwargs):
        raise ValidationError('Financial records cannot be deleted.')


class FeeBalance(FinancialRecordModel):
    KIND_TUITION = 'TUITION'
    KIND_TRANSPORT = 'TRANSPORT'
    KIND_CHOICES = (
        (KIND_TUITION, 'Tuition'),
        (KIND_TRANSPORT, 'Transport'),
    )

    KIND = None
    TERM_COUNT = 0

    school = models.ForeignKey(School, on_delete=models.CASCADE, related_name='+')
    session = models.ForeignKey(AcademicSession, on_delete=models.CASCADE, related_name='+')
    objects = SchoolManager()

    actual_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    concession_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    version = models.PositiveIntegerField(default=1)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True

    @classmethod
    def term_numbers(cls):
        return range(1, cls.TERM_COUNT + 1)

    @classmethod
    def has_term(cls, term_number):
        return term_number in cls.term_numbers()

    def term_amount(self, term_number):
        return to_decimal(getattr(self, f'term{term_number}_amount'))

    def term_paid(self, term_number):
        return to_decimal(getattr(self, f'term{term_number}_paid'))

    def term_balance(self, term_number):
        return slot_status(self.term_amount(term_number), self.term_paid(term_number))[0]

    def term_status(self, term_number):
        return slot_status(self.term_amount(term_number), self.term_paid(term_number))[1]

    @property
    def net_fee(self):
        return non_negative(to_decimal(self.actual_fee) - to_decimal(self.concession_amount))

    @property
    def terms_balance(self):
        return sum((self.term_balance(term) for term in self.term_numbers()), ZERO)

    @property
    def outstanding(self):
        return self.terms_balance

    def terms(self):
        rows = []
        for term in self.term_numbers():
            balance, status = slot_status(self.term_amount(term), self.term_paid(term))
            rows.append({
                'term_number': term,
                'amount': self.term_amount(term),
                'paid': self.term_paid(term),
                'balance': balance,
                'status': status,
            })
        return rows

    def clean(self):
        super().clean()
        if self.actual_fee is None or self.actual_fee < 0:
            raise ValidationError({'actual_fee': 'Actual fee cannot be negative.'})
        if self.concession_amount is None or self.concession_amount < 0:
            raise ValidationError({'concession_amount': 'Concession amount cannot be negative.'})
        if self.concession_amount > self.actual_fee:
            raise ValidationError({'concession_amount': 'Concession amount cannot exceed actual fee.'})
        if self.enrollment_id and self.enrollment.school_id != self.school_id:
            raise ValidationError({'enrollment': 'Enrollment must belong to selected school.'})

    def as_dict(self):
        return {
            'kind': self.KIND,
            'enrollment_id': self.enrollment_id,
            'actual_fee': self.actual_fee,
            'concession_amount': self.concession_amount,
            'net_fee': self.net_fee,
            'terms': self.terms(),
            'outstanding': self.outstanding,
            'version': self.version,
        }


class TuitionFeeBalance(FeeBalance):
    KIND = FeeBalance.KIND_TUITION
    TERM_COUNT = 3

    enrollment = models.OneToOneField(Enrollment, on_delete=models.CASCADE, related_name='tuition_balance')
    book_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    book_paid = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    term1_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    term1_paid = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    term2_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    term2_paid = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    term3_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    term3_paid = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))

    class Meta:
        ordering = ['enrollment_id']
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(actual_fee__gte=0) & Q(concession_amount__gte=0)
                    & Q(book_fee__gte=0) & Q(book_paid__gte=0)
                    & Q(term1_amount__gte=0) & Q(term1_paid__gte=0)
                    & Q(term2_amount__gte=0) & Q(term2_paid__gte=0)
                    & Q(term3_amount__gte=0) & Q(term3_paid__gte=0)
                ),
                name='tuition_balance_non_negative_amounts',
            ),
            models.CheckConstraint(
                condition=Q(concession_amount__lte=F('actual_fee')),
                name='tuition_concession_not_above_actual',
            ),
        ]
        indexes = [
            models.Index(fields=['school', 'session']),
        ]

    @property
    def book_balance(self):
        return slot_status(self.book_fee, self.book_paid)[0]

    @property
    def book_status(self):
        return slot_status(self.book_fee, self.book_paid)[1]

    @property
    def outstanding(self):
        return self.terms_balance + self.book_balance

    def as_dict(self):
        data = super().as_dict()
        data['book'] = {
            'amount': self.book_fee,
            'paid': self.book_paid,
            'balance': self.book_balance,
            'status': self.book_status,
        }
        return data

    def __str__(self):
        return f"Tuition balance #{self.enrollment_id}"


class TransportFeeBalance(FeeBalance):
    KIND = FeeBalance.KIND_TRANSPORT
    TERM_COUNT = 2

    enrollment = models.OneToOneField(Enrollment, on_delete=models.CASCADE, related_name='transport_balance')
    term1_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    term1_paid = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    term2_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    term2_paid = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))

    class Meta:
        ordering = ['enrollment_id']
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(actual_fee__gte=0) & Q(concession_amount__gte=0)
                    & Q(term1_amount__gte=0) & Q(term1_paid__gte=0)
                    & Q(term2_amount__gte=0) & Q(term2_paid__gte=0)
                ),
                name='transport_balance_non_negative_amounts',
            ),
            models.CheckConstraint(
                condition=Q(concession_amount__lte=F('actual_fee')),
                name='transport_concession_not_above_actual',
            ),
        ]
        indexes = [
            models.Index(fields=['school', 'session']),
        ]

    @property
    def total_fee(self):
        return self.net_fee

    @property
    def overall_balance_fee(self):
        return self.terms_balance

    def __str__(self):
        return f"Transport balance #{self.enrollment_id}"


class IncomeRecord(FinancialRecordModel):
    PURPOSE_ADMISSION_FEE = 'ADMISSION_FEE'
    PURPOSE_TUITION_FEE = 'TUITION_FEE'
    PURPOSE_TRANSPORT_FEE = 'TRANSPORT_FEE'
    PURPOSE_BOOK_FEE = 'BOOK_FEE'
    PURPOSE_APPLICATION_FEE = 'APPLICATION_FEE'
    PURPOSE_OTHER = 'OTHER'
    PURPOSE_CHOICES = (
        (PURPOSE_ADMISSION_FEE, 'Admission Fee'),
        (PURPOSE_TUITION_FEE, 'Tuition Fee'),
        (PURPOSE_TRANSPORT_FEE, 'Transport Fee'),
        (PURPOSE_BOOK_FEE, 'Book Fee'),
        (PURPOSE_APPLICATION_FEE, 'Application Fee'),
        (PURPOSE_OTHER, 'Other'),
    )

    METHOD_CASH = 'CASH'
    METHOD_UPI = 'UPI'
    METHOD_CARD = 'CARD'
    PAYMENT_METHOD_CHOICES = (
        (METHOD_CASH, 'Cash'),
        (METHOD_UPI, 'UPI'),
        (METHOD_CARD, 'Card'),
    )

    school = models.ForeignKey(School, on_delete=models.CASCADE, related_name='income_records')
    session = models.ForeignKey(
        AcademicSession,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='income_records',
    )
    objects = SchoolManager()

    batch_id = models.UUIDField(db_index=True)
    enrollment = models.ForeignKey(
        Enrollment,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='income_records',
    )
    reservation = models.ForeignKey(
        'admissions.Reservation',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='income_records',
    )
    admission_no = models.CharField(max_length=50, blank=True)
    purpose = models.CharField(max_length=20, choices=PURPOSE_CHOICES)
    term_number = models.PositiveSmallIntegerField(null=True, blank=True)
    custom_purpose_name = models.CharField(max_length=100, blank=True)
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2)
    payment_method = models.CharField(max_length=10, choices=PAYMENT_METHOD_CHOICES, default=METHOD_CASH)
    remarks = models.CharField(max_length=255, blank=True)
    collected_by = models.CharField(max_length=150, blank=True)
    receipt_number = models.CharField(max_length=50, blank=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ['-created_at', '-id']
        constraints = [
            models.CheckConstraint(
                condition=Q(paid_amount__gt=0),
                name='income_paid_amount_positive',
            ),
            models.CheckConstraint(
                condition=Q(enrollment__isnull=False) | Q(reservation__isnull=False),
                name='income_has_payer',
            ),
            models.CheckConstraint(
                condition=Q(term_number__isnull=True) | Q(term_number__gte=1, term_number__lte=3),
                name='income_term_number_range',
            ),
        ]
        indexes = [
            models.Index(fields=['school', 'created_at']),
            models.Index(fields=['school', 'purpose']),
            models.Index(fields=['school', 'enrollment']),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            update_fields = kwargs.get('update_fields')
            if not update_fields or set(update_fields) != {'receipt_number'}:
                raise ValidationError('Income records are immutable.')
        super().save(*args, **kwargs)

    def as_dict(self):
        return {
            'income_id': self.id,
            'batch_id': str(self.batch_id),
            'enrollment_id': self.enrollment_id,
            'reservation_id': self.reservation_id,
            'admission_no': self.admission_no,
            'purpose': self.purpose,
            'term_number': self.term_number,
            'custom_purpose_name': self.custom_purpose_name,
            'paid_amount': self.paid_amount,
            'payment_method': self.payment_method,
            'receipt_number': self.receipt_number,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __str__(self):
        return f"Income #{self.id} {self.purpose} {self.paid_amount}"
