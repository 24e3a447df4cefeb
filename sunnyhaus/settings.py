import os
import dj_database_url
from pathlib import Path

# 1. 基本路徑設定
BASE_DIR = Path(__file__).resolve().parent.parent


def _env_list(name, default=None):
    value = os.environ.get(name)
    if not value:
        return list(default or [])
    return [item.strip() for item in value.split(",") if item.strip()]


# 2. 環境變數讀取
SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY")
if not SECRET_KEY:
    # 正式環境若沒設定 SECRET_KEY 必須報錯退出
    raise ValueError(
        "DJANGO_SECRET_KEY environment variable is required. Please set it in your environment."
    )

# 預設為 False，只有環境變數明確設為 "True" 時才開啟
DEBUG = os.environ.get("DEBUG", "False") == "True"

# 3. 網域與信任來源設定
ALLOWED_HOSTS = _env_list("ALLOWED_HOSTS", ["localhost", "127.0.0.1"])
CSRF_TRUSTED_ORIGINS = _env_list("CSRF_TRUSTED_ORIGINS")

# 4. 應用程式定義
INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "whitenoise.runserver_nostatic",
    "django.contrib.staticfiles",
    "rest_framework",
    "django_json_widget",  # 管理後台 JSON 編輯器
    "bakery",  # 商品、顧客、訂單
    "points",  # 點數與虛擬點數卡
    "commissions",  # 業務分潤與合約簽署
]

# 5. 中間件 (WhiteNoise 必須放在 Security 之後)
MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "whitenoise.middleware.WhiteNoiseMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "sunnyhaus.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "sunnyhaus.wsgi.application"

# 6. 資料庫設定 (優先讀取 DATABASE_URL)
DATABASES = {
    "default": dj_database_url.config(
        default=f'sqlite:///{BASE_DIR / "db.sqlite3"}', conn_max_age=600
    )
}

# 7. 語言與時區 (台灣)
LANGUAGE_CODE = "zh-Hant"
TIME_ZONE = "Asia/Taipei"
USE_I18N = True
USE_TZ = True

# 8. 靜態檔案與上傳檔案
STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"
MEDIA_URL = "/media/"
MEDIA_ROOT = Path(os.environ.get("MEDIA_ROOT", BASE_DIR / "media"))
STORAGES = {
    "default": {"BACKEND": "django.core.files.storage.FileSystemStorage"},
    "staticfiles": {
        "BACKEND": "whitenoise.storage.CompressedManifestStaticFilesStorage"
    },
}
# 上傳上限 (合約圖與商品圖)
DATA_UPLOAD_MAX_MEMORY_SIZE = 20 * 1024 * 1024
UPLOAD_MAX_FILE_SIZE = 10 * 1024 * 1024

# 對外網址，組 LINE 圖片訊息與 QR Code 連結時使用
PUBLIC_BASE_URL = os.environ.get("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")

# 合約圖片用的中文字型 (TTF/OTF/TTC)，未設定時尋找系統 Noto CJK 等字型，都沒有則無法簽約
CONTRACT_FONT_PATH = os.environ.get("CONTRACT_FONT_PATH", "")

# 9. 安全標頭與 HTTPS 設定 (當 DEBUG=False 時啟用)
if not DEBUG:
    SECURE_SSL_REDIRECT = os.environ.get("SECURE_SSL_REDIRECT", "True") == "True"
    # 透過 Nginx 轉發時，讓 Django 辨識 HTTPS
    SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")

    SESSION_COOKIE_SECURE = True
    CSRF_COOKIE_SECURE = True

    SECURE_CONTENT_TYPE_NOSNIFF = True
    X_FRAME_OPTIONS = "DENY"

    SECURE_HSTS_SECONDS = 31536000
    SECURE_HSTS_INCLUDE_SUBDOMAINS = True
    SECURE_HSTS_PRELOAD = True

# 10. Session 安全 (HttpOnly Cookie 驗證)
SESSION_COOKIE_HTTPONLY = True
SESSION_COOKIE_SAMESITE = "Lax"
SESSION_COOKIE_AGE = 3600  # 1 小時後過期
SESSION_SAVE_EVERY_REQUEST = True

# 11. REST Framework 設定
REST_FRAMEWORK = {
    "DEFAULT_THROTTLE_CLASSES": [
        "rest_framework.throttling.AnonRateThrottle",
        "rest_framework.throttling.UserRateThrottle",
    ],
    "DEFAULT_THROTTLE_RATES": {"anon": "300/hour", "user": "5000/hour"},
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "bakery.permissions.CookieSessionAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAdminUser",
    ],
    "DEFAULT_PAGINATION_CLASS": "bakery.pagination.StandardPagination",
    "PAGE_SIZE": 20,
    "EXCEPTION_HANDLER": "bakery.api.exception_handler",
    # ?format= 留給匯出與 QR Code 端點使用
    "URL_FORMAT_OVERRIDE": None,
}

# 12. LINE / LINE Pay 設定
LINE_CHANNEL_ACCESS_TOKEN = os.environ.get("LINE_CHANNEL_ACCESS_TOKEN", "")
LINE_CHANNEL_SECRET = os.environ.get("LINE_CHANNEL_SECRET", "")
LINE_LOGIN_CHANNEL_ID = os.environ.get("LINE_LOGIN_CHANNEL_ID", "")
LINE_ADMIN_USER_IDS = _env_list("LINE_ADMIN_USER_IDS")

LINE_PAY_CHANNEL_ID = os.environ.get("LINE_PAY_CHANNEL_ID", "")
LINE_PAY_CHANNEL_SECRET = os.environ.get("LINE_PAY_CHANNEL_SECRET", "")
LINE_PAY_SANDBOX = os.environ.get("LINE_PAY_SANDBOX", "True") == "True"

# 合約通知 API 使用的共用金鑰 (x-api-key)
NOTIFY_API_KEY = os.environ.get("NOTIFY_API_KEY", "")

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# 13. Logging 設定 (讓 logger.info 能顯示在 Console)
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {module} {message}",
            "style": "{",
        },
        "simple": {
            "format": "{levelname} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "INFO",
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
        "bakery": {"handlers": ["console"], "level": "INFO", "propagate": False},
        "points": {"handlers": ["console"], "level": "INFO", "propagate": False},
        "commissions": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
    },
}
