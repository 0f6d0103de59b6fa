from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models

from apps.core.academic_sessions.models import AcademicSession
from apps.core.schools.models import School
from apps.core.utils.managers import SchoolManager


class SchoolClass(models.Model):
    """Catalog class for one academic session; fee figures are copied into balances at assignment."""

    school = models.ForeignKey(
        School,
        on_delete=models.CASCADE,
        related_name='classes',
    )
    session = models.ForeignKey(
        AcademicSession,
        on_delete=models.CASCADE,
        related_name='classes',
    )
    objects = SchoolManager()

    name = models.CharField(max_length=50)  # e.g. 1st, 10th
    code = models.CharField(max_length=20, blank=True)
    display_order = models.PositiveIntegerField(default=0)
    tuition_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    book_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['display_order', 'name', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['school', 'session', 'name'],
                name='unique_class_name_per_session',
            ),
        ]
        indexes = [
            models.Index(fields=['school', 'session', 'is_active']),
        ]

    def clean(self):
        super().clean()
        if self.session_id and self.school_id and self.session.school_id != self.school_id:
            raise ValidationError({'session': 'Selected session does not belong to the selected school.'})
        if self.tuition_fee is not None and self.tuition_fee < 0:
            raise ValidationError({'tuition_fee': 'Tuition fee cannot be negative.'})
        if self.book_fee is not None and self.book_fee < 0:
            raise ValidationError({'book_fee': 'Book fee cannot be negative.'})

    def next_class(self, session):
        """The class a promoted student moves into within ``session``."""
        return (
            SchoolClass.objects.filter(
                school_id=self.school_id,
                session=session,
                is_active=True,
                display_order__gt=self.display_order,
            )
            .order_by('display_order', 'id')
            .first()
        )

    def __str__(self):
        return f"{self.name} ({self.session.name})"


class Section(models.Model):
    school_class = models.ForeignKey(
        SchoolClass,
        on_delete=models.CASCADE,
        related_name='sections',
    )
    name = models.CharField(max_length=10)  # A, B, C
    capacity = models.PositiveIntegerField(null=True, blank=True)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['name', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['school_class', 'name'],
                name='unique_section_name_per_class',
            ),
        ]

    @property
    def school(self):
        return self.school_class.school

    def __str__(self):
        return f"{self.school_class.name} - {self.name}"
