import os
from datetime import timedelta

from dotenv import load_dotenv

# Values in the process environment win over .env
load_dotenv()


class Config:
    # Environment
    FLASK_ENV = os.getenv('FLASK_ENV', 'development')

    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    PERMANENT_SESSION_LIFETIME = timedelta(minutes=30)

    # Supabase project
    SUPABASE_URL = os.getenv('SUPABASE_URL')
    SUPABASE_KEY = os.getenv('SUPABASE_KEY')

    # Realtime notifications (set to false to publish in-process only)
    REALTIME_ENABLED = os.getenv('REALTIME_ENABLED', 'True').lower() == 'true'

    # Notification feed
    NOTIFICATION_FEED_LIMIT = int(os.getenv('NOTIFICATION_FEED_LIMIT', 50))
    NOTIFICATION_MARK_READ_ATTEMPTS = int(os.getenv('NOTIFICATION_MARK_READ_ATTEMPTS', 2))

    # Messaging
    PHONE_DEFAULT_COUNTRY_CODE = os.getenv('PHONE_DEFAULT_COUNTRY_CODE', '41')

    # Storage
    DOCUMENTS_BUCKET = os.getenv('DOCUMENTS_BUCKET', 'documents')
    SIGNED_URL_EXPIRES_IN = int(os.getenv('SIGNED_URL_EXPIRES_IN', 3600))

    # Public URL of the app (tenant subdomains hang off its host)
    APP_BASE_URL = os.getenv('APP_BASE_URL', 'https://lyta.ch')


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret-key'
    SUPABASE_URL = 'http://localhost:54321'
    SUPABASE_KEY = 'test-anon-key'
    REALTIME_ENABLED = False
    NOTIFICATION_MARK_READ_ATTEMPTS = 2
