"""
Pytest configuration for the entire test suite.

This file configures test database to use SQLite for faster tests.
"""
import django
from django.conf import settings


def pytest_configure():
    """Configure Django settings for tests."""
    # Force SQLite for tests (faster, no Docker dependency)
    settings.DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': ':memory:',  # In-memory database for speed
        }
    }

    # Never reach a real service from tests
    settings.MEDICAL_HISTORY = dict(settings.MEDICAL_HISTORY, API_BASE_URL='http://testserver/api/v1')

    django.setup()
