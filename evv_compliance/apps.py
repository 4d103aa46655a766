from django.apps import AppConfig


class EVVComplianceConfig(AppConfig):
    name = "evv_compliance"
    verbose_name = "EVV Compliance"

    def ready(self):
        # Rule catalog is read-only after start; build it once here
        from .state_rules import get_default_catalog
        get_default_catalog()
