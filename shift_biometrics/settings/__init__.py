"""Default settings module; development and test runs use the base configuration."""

from .base import *  # noqa: F401,F403
