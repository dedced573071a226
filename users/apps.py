"""App configuration for the users app."""

from django.apps import AppConfig


class UsersConfig(AppConfig):
    """Configuration class for the users app, which owns per-user account state."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "users"
