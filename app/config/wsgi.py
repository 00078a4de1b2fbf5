"""
WSGI config for the payments engine.

Exposes the WSGI callable as a module-level variable named ``application``.
The Stripe webhook endpoint is served through it.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_wsgi_application()
