from .base import *

DEBUG = False

SECRET_KEY = 'test-secret-key'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

ALLOWED_HOSTS = ['testserver']

PORTPOS = {
    **PORTPOS,
    "APP_KEY": "app-key",
    "SECRET_KEY": "secret-key",
    "SANDBOX": True,
    "INTEGRATION_METHOD": "redirect",
    "SITE_URL": "https://shop.example.com",
    "SITE_NAME": "Test Shop",
}
