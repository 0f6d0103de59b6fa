from django.db import models


class SchoolQuerySet(models.QuerySet):
    def for_school(self, school):
        return self.filter(school=school)

    def active(self):
        return self.filter(is_active=True)


class SchoolManager(models.Manager):
    """Branch-scoped access; every ledger query goes through ``for_school``."""

    def get_queryset(self):
        return SchoolQuerySet(self.model, using=self._db)

    def for_school(self, school):
        return self.get_queryset().for_school(school)
