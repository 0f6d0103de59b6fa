from django import forms

from apps.core.academic_sessions.models import AcademicSession
from apps.core.academics.models import SchoolClass


class _SchoolScopedForm(forms.Form):
    def __init__(self, *args, **kwargs):
        self.school = kwargs.pop('school', None)
        super().__init__(*args, **kwargs)
        if not self.school:
            return
        for field in self.fields.values():
            if not isinstance(field, forms.ModelChoiceField):
                continue
            field.queryset = field.queryset.model.objects.filter(school=self.school)


class EligibilityFilterForm(_SchoolScopedForm):
    session = forms.ModelChoiceField(queryset=AcademicSession.objects.none(), required=False)
    class_id = forms.ModelChoiceField(queryset=SchoolClass.objects.none(), required=False)
    search = forms.CharField(max_length=100, required=False)
    require_fees_paid = forms.NullBooleanField(required=False)

    def clean(self):
        cleaned = super().clean()
        if cleaned.get('session') is None and self.school is not None:
            cleaned['session'] = self.school.current_session
        if cleaned.get('session') is None:
            raise forms.ValidationError('Select an academic session.')
        if cleaned.get('require_fees_paid') is None:
            cleaned['require_fees_paid'] = True
        return cleaned


class PromoteForm(_SchoolScopedForm):
    next_academic_session = forms.ModelChoiceField(queryset=AcademicSession.objects.none())
    require_fees_paid = forms.NullBooleanField(required=False)
    promoted_by = forms.CharField(max_length=150, required=False)

    def __init__(self, *args, **kwargs):
        self.enrollment_ids = kwargs.pop('enrollment_ids', None)
        super().__init__(*args, **kwargs)

    def clean(self):
        cleaned = super().clean()
        ids = self.enrollment_ids
        if not isinstance(ids, list) or not ids:
            raise forms.ValidationError('Select at least one enrollment to promote.')
        try:
            cleaned['enrollment_ids'] = [int(value) for value in ids]
        except (TypeError, ValueError):
            raise forms.ValidationError('Enrollment ids must be integers.') from None
        if cleaned.get('require_fees_paid') is None:
            cleaned['require_fees_paid'] = True
        return cleaned


class DropoutForm(forms.Form):
    enrollment_id = forms.IntegerField(min_value=1)
    reason = forms.CharField(max_length=255)
    date = forms.DateField()
    changed_by = forms.CharField(max_length=150, required=False)
