from pathlib import Path
import os

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get("QRCALL_SECRET_KEY", "unsafe-dev-secret-key")
DEBUG = os.environ.get("QRCALL_DEBUG", "0") == "1"

ALLOWED_HOSTS = [
    host.strip()
    for host in os.environ.get("QRCALL_ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",")
    if host.strip()
]

INSTALLED_APPS = [
    "corsheaders",
    "qrcall.apps.QrcallConfig",
]

MIDDLEWARE = [
    "corsheaders.middleware.CorsMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
]

CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("QRCALL_CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]

ROOT_URLCONF = "config.urls"

WSGI_APPLICATION = "config.wsgi.application"

# No Django models: calls, QR codes, devices and users live in Firestore
DATABASES = {}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "qrcall",
    }
}

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")
USE_X_FORWARDED_HOST = True

# Store
QRCALL_STORE_BACKEND = os.environ.get("QRCALL_STORE_BACKEND", "firestore")
QRCALL_SEED_DEMO = os.environ.get("QRCALL_SEED_DEMO", "0") == "1"
FIREBASE_USE_EMULATOR = os.environ.get("FIREBASE_USE_EMULATOR", "false").lower() == "true"
FIREBASE_PROJECT_ID = os.environ.get("FIREBASE_PROJECT_ID")
FIREBASE_SERVICE_ACCOUNT = os.environ.get("FIREBASE_SERVICE_ACCOUNT")
FIREBASE_SERVICE_ACCOUNT_PATH = os.environ.get("FIREBASE_SERVICE_ACCOUNT_PATH")
FIRESTORE_EMULATOR_HOST = os.environ.get("FIRESTORE_EMULATOR_HOST")

# Agora RTC
AGORA_APP_ID = os.environ.get("AGORA_APP_ID")
AGORA_APP_CERT = os.environ.get("AGORA_APP_CERT")
AGORA_TOKEN_EXPIRE = int(os.environ.get("AGORA_TOKEN_EXPIRE", "3600"))

# Masked calling relay
MASKED_CALLING_ENABLED = os.environ.get("MASKED_CALLING_ENABLED", "false").lower() == "true"
MASKED_CALLING_API_URL = os.environ.get("MASKED_CALLING_API_URL")
MASKED_CALLING_API_KEY = os.environ.get("MASKED_CALLING_API_KEY")
MASKED_CALLING_TIMEOUT = float(os.environ.get("MASKED_CALLING_TIMEOUT", "30"))
MASKED_CALLING_RETRIES = int(os.environ.get("MASKED_CALLING_RETRIES", "3"))
MASKED_CALLING_BACKOFF = float(os.environ.get("MASKED_CALLING_BACKOFF", "1"))
MASKED_CALLING_WEBHOOK_SECRET = os.environ.get("MASKED_CALLING_WEBHOOK_SECRET")
QRCALL_API_URL = os.environ.get("QRCALL_API_URL", "http://localhost:8000")

# Calls
CALL_RING_TIMEOUT = int(os.environ.get("CALL_RING_TIMEOUT", "30"))
MAX_CALL_DURATION = int(os.environ.get("MAX_CALL_DURATION", "3600"))
CALL_RATE_LIMIT_MAX = int(os.environ.get("CALL_RATE_LIMIT_MAX", "5"))
CALL_RATE_LIMIT_WINDOW = int(os.environ.get("CALL_RATE_LIMIT_WINDOW", "300"))

# Push notifications
NOTIFICATIONS_ENABLED = os.environ.get("NOTIFICATIONS_ENABLED", "true").lower() == "true"
NOTIFICATION_TIMEOUT = float(os.environ.get("NOTIFICATION_TIMEOUT", "10"))
NOTIFICATION_RETRIES = int(os.environ.get("NOTIFICATION_RETRIES", "3"))
NOTIFICATION_WORKERS = int(os.environ.get("NOTIFICATION_WORKERS", "4"))
APNS_TEAM_ID = os.environ.get("APNS_TEAM_ID")
APNS_KEY_ID = os.environ.get("APNS_KEY_ID")
APNS_BUNDLE_ID = os.environ.get("APNS_BUNDLE_ID")
APNS_KEY_PATH = os.environ.get("APNS_KEY_PATH")
APNS_KEY_CONTENT = os.environ.get("APNS_KEY_CONTENT")
APNS_USE_SANDBOX = os.environ.get("APNS_USE_SANDBOX", "false").lower() == "true"

# Auth
QRCALL_JWT_SECRET = os.environ.get("QRCALL_JWT_SECRET")
QRCALL_SYSTEM_API_KEY = os.environ.get("QRCALL_SYSTEM_API_KEY")

# Socket.IO
SOCKETIO_CORS_ORIGINS = os.environ.get("SOCKETIO_CORS_ORIGINS", "*")
SOCKETIO_PING_TIMEOUT = int(os.environ.get("SOCKETIO_PING_TIMEOUT", "60"))
SOCKETIO_PING_INTERVAL = int(os.environ.get("SOCKETIO_PING_INTERVAL", "25"))
# Defaults on whenever user tokens can be verified
SOCKETIO_REQUIRE_AUTH = os.environ.get(
    "SOCKETIO_REQUIRE_AUTH", "true" if QRCALL_JWT_SECRET else "false"
).lower() == "true"

# Logging Configuration
LOG_DIR = BASE_DIR / "logs"
LOG_DIR.mkdir(exist_ok=True)

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "[{asctime}] {levelname} {name} {message}",
            "style": "{",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
        "simple": {
            "format": "[{asctime}] {levelname} {message}",
            "style": "{",
            "datefmt": "%H:%M:%S",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "simple",
        },
        "file": {
            "class": "logging.FileHandler",
            "filename": LOG_DIR / "django.log",
            "formatter": "verbose",
        },
        "qrcall_file": {
            "class": "logging.FileHandler",
            "filename": LOG_DIR / "qrcall.log",
            "formatter": "verbose",
        },
    },
    "loggers": {
        "django": {
            "handlers": ["console", "file"],
            "level": "INFO",
        },
        "django.request": {
            "handlers": ["console", "file"],
            "level": "DEBUG",
            "propagate": False,
        },
        "qrcall": {
            "handlers": ["console", "qrcall_file"],
            "level": "DEBUG",
            "propagate": False,
        },
    },
}
