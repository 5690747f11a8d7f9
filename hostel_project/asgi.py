"""
ASGI config for hostel_project.

The payment views poll M-Pesa from async views, so this is the entry point to
serve the project with (e.g. ``uvicorn hostel_project.asgi:application``).
"""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'hostel_project.settings')

application = get_asgi_application()
