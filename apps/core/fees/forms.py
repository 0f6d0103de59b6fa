from django import forms

from apps.core.academic_sessions.models import AcademicSession

from .models import FeeBalance


class PaymentPostForm(forms.Form):
    """Header of a payment request. Line items are validated by ``post_payment``."""

    remarks = forms.CharField(max_length=255, required=False)
    collected_by = forms.CharField(max_length=150, required=False)

    def __init__(self, *args, **kwargs):
        self.details = kwargs.pop('details', None)
        super().__init__(*args, **kwargs)

    def clean(self):
        cleaned = super().clean()
        if not isinstance(self.details, list) or not self.details:
            raise forms.ValidationError('Provide at least one payment detail.')
        if not all(isinstance(detail, dict) for detail in self.details):
            raise forms.ValidationError('Each payment detail must be an object.')
        cleaned['details'] = self.details
        return cleaned


class BalanceConcessionForm(forms.Form):
    kind = forms.ChoiceField(choices=FeeBalance.KIND_CHOICES)
    amount = forms.DecimalField(max_digits=12, decimal_places=2, min_value=0)


class DashboardFilterForm(forms.Form):
    session = forms.ModelChoiceField(queryset=AcademicSession.objects.none(), required=False)
    as_of = forms.DateField(required=False)

    def __init__(self, *args, **kwargs):
        self.school = kwargs.pop('school', None)
        super().__init__(*args, **kwargs)
        if self.school:
            self.fields['session'].queryset = AcademicSession.objects.filter(school=self.school)
