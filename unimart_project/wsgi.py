"""
WSGI config for the UniMart project.

Exposes the WSGI callable as a module-level variable named ``application``.
gunicorn picks it up through ``gunicorn.conf.py``.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "unimart_project.settings")

application = get_wsgi_application()
