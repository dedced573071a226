"""App configuration for the biometrics app."""

from django.apps import AppConfig


class BiometricsConfig(AppConfig):
    """
    Configuration class for the biometrics app.

    ``ready`` builds the process-wide :class:`VerificationOrchestrator` once
    the model registry is populated, so every request shares one set of
    components configured from settings.
    """

    default_auto_field = "django.db.models.BigAutoField"
    name = "biometrics"
    verbose_name = "Biometric verification"

    orchestrator = None

    def ready(self) -> None:
        from .services import build_orchestrator

        self.orchestrator = build_orchestrator()
