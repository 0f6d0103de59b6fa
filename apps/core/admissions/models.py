from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import F, Q

from apps.core.academic_sessions.models import AcademicSession
from apps.core.academics.models import SchoolClass
from apps.core.schools.models import School
from apps.core.utils.managers import SchoolManager


class Reservation(models.Model):
    STATUS_PENDING = 'PENDING'
    STATUS_CONFIRMED = 'CONFIRMED'
    STATUS_CANCELLED = 'CANCELLED'
    STATUS_CHOICES = (
        (STATUS_PENDING, 'Pending'),
        (STATUS_CONFIRMED, 'Confirmed'),
        (STATUS_CANCELLED, 'Cancelled'),
    )

    school = models.ForeignKey(School, on_delete=models.CASCADE, related_name='reservations')
    session = models.ForeignKey(
        AcademicSession,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='reservations',
    )
    objects = SchoolManager()

    # Assigned from the primary key right after insert.
    reservation_no = models.CharField(max_length=50, null=True, blank=True)
    student_name = models.CharField(max_length=200)
    guardian_name = models.CharField(max_length=120, blank=True)
    phone = models.CharField(max_length=20, blank=True)
    school_class = models.ForeignKey(
        SchoolClass,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='reservations',
    )

    application_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    application_fee_paid = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    tuition_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    transport_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    book_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    tuition_concession = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    transport_concession = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    concession_lock = models.BooleanField(default=False)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)
    remarks = models.CharField(max_length=255, blank=True)

    application_income = models.ForeignKey(
        'fees.IncomeRecord',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='+',
    )
    admission_income = models.ForeignKey(
        'fees.IncomeRecord',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='+',
    )
    is_enrolled = models.BooleanField(default=False)
    confirmed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at', '-id']
        constraints = [
            models.UniqueConstraint(
                fields=['school', 'reservation_no'],
                name='unique_reservation_no_per_school',
            ),
            models.CheckConstraint(
                condition=Q(is_enrolled=False) | Q(status='CONFIRMED'),
                name='reservation_enrolled_only_when_confirmed',
            ),
            models.CheckConstraint(
                condition=Q(concession_lock=False) | Q(status='CONFIRMED'),
                name='reservation_locked_only_when_confirmed',
            ),
            models.CheckConstraint(
                condition=(
                    Q(tuition_concession__gte=0) & Q(tuition_concession__lte=F('tuition_fee'))
                    & Q(transport_concession__gte=0) & Q(transport_concession__lte=F('transport_fee'))
                ),
                name='reservation_concession_within_fee',
            ),
        ]
        indexes = [
            models.Index(fields=['school', 'status']),
        ]

    @property
    def is_pending(self):
        return self.status == self.STATUS_PENDING

    @property
    def is_confirmed(self):
        return self.status == self.STATUS_CONFIRMED

    def clean(self):
        super().clean()
        if self.session_id and self.session.school_id != self.school_id:
            raise ValidationError({'session': 'Session must belong to selected school.'})
        if self.school_class_id and self.school_class.school_id != self.school_id:
            raise ValidationError({'school_class': 'Class must belong to selected school.'})
        for field in ('application_fee', 'tuition_fee', 'transport_fee', 'book_fee'):
            value = getattr(self, field)
            if value is not None and value < 0:
                raise ValidationError({field: 'Fee cannot be negative.'})

    def as_dict(self):
        return {
            'reservation_id': self.id,
            'reservation_no': self.reservation_no,
            'student_name': self.student_name,
            'class_id': self.school_class_id,
            'session_id': self.session_id,
            'application_fee': self.application_fee,
            'application_fee_paid': self.application_fee_paid,
            'tuition_fee': self.tuition_fee,
            'transport_fee': self.transport_fee,
            'book_fee': self.book_fee,
            'tuition_concession': self.tuition_concession,
            'transport_concession': self.transport_concession,
            'concession_lock': self.concession_lock,
            'status': self.status,
            'remarks': self.remarks,
            'application_income_id': self.application_income_id,
            'admission_income_id': self.admission_income_id,
            'is_enrolled': self.is_enrolled,
            'confirmed_at': self.confirmed_at.isoformat() if self.confirmed_at else None,
            'cancelled_at': self.cancelled_at.isoformat() if self.cancelled_at else None,
        }

    def __str__(self):
        return f"{self.reservation_no} - {self.student_name} ({self.status})"


class ReservationStatusHistory(models.Model):
    reservation = models.ForeignKey(Reservation, on_delete=models.CASCADE, related_name='status_history')
    old_status = models.CharField(max_length=20, choices=Reservation.STATUS_CHOICES)
    new_status = models.CharField(max_length=20, choices=Reservation.STATUS_CHOICES)
    remarks = models.CharField(max_length=255, blank=True)
    changed_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-changed_at', '-id']

    def __str__(self):
        return f"{self.reservation_id}: {self.old_status} -> {self.new_status}"
