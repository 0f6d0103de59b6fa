from django.apps import apps
from django.test.runner import DiscoverRunner
from django.utils.module_loading import module_has_submodule


class InstalledAppsOnlyDiscoverRunner(DiscoverRunner):
    """Run the ``tests`` modules of the project's own apps when no labels are given."""

    app_prefix = 'apps.'

    def ledger_test_labels(self):
        return [
            app_config.name
            for app_config in apps.get_app_configs()
            if app_config.name.startswith(self.app_prefix)
            and module_has_submodule(app_config.module, 'tests')
        ]

    def build_suite(self, test_labels=None, **kwargs):
        if not test_labels:
            test_labels = self.ledger_test_labels()
        return super().build_suite(test_labels=test_labels, **kwargs)
