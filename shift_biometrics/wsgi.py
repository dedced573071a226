"""
WSGI config for the shift_biometrics project.

It exposes the WSGI callable as a module-level variable named ``application``.
"""

import os

from django.core.wsgi import get_wsgi_application

# Application servers get the hardened production settings by default. Local
# servers can export DJANGO_SETTINGS_MODULE=shift_biometrics.settings instead.
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "shift_biometrics.settings.production")

application = get_wsgi_application()
