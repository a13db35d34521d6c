import os

from dotenv import load_dotenv

load_dotenv()

# Environment
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
PORT = int(os.getenv("PORT", 8000))

# Database
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# Auth settings
JWT_SECRET = os.getenv("JWT_SECRET", "supersecret")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))

# Public URLs
API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000").rstrip("/")
SITE_URL = os.getenv("SITE_URL", "http://localhost:3000").rstrip("/")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Payments
PLATFORM_FEE_PERCENTAGE = float(os.getenv("PLATFORM_FEE_PERCENTAGE", 10))
PAYMENT_WEBHOOK_SECRET = os.getenv("PAYMENT_WEBHOOK_SECRET", "webhook-secret")
PAYMENT_PROVIDER_URL = os.getenv("PAYMENT_PROVIDER_URL", "https://api.payments.example.com").rstrip("/")
PAYMENT_PROVIDER_SECRET_KEY = os.getenv("PAYMENT_PROVIDER_SECRET_KEY", "")
PAYMENT_PROVIDER_TIMEOUT = float(os.getenv("PAYMENT_PROVIDER_TIMEOUT", 10))

# Email
APP_NAME = os.getenv("APP_NAME", "Digital Goods Marketplace")
MAIL_ENABLED = os.getenv("MAIL_ENABLED", "0").lower() in ("1", "true", "yes")
MAIL_USERNAME = os.getenv("MAIL_USERNAME", "")
MAIL_PASSWORD = os.getenv("MAIL_PASSWORD", "")
MAIL_FROM = os.getenv("MAIL_FROM", "noreply@example.com")
MAIL_FROM_NAME = os.getenv("MAIL_FROM_NAME", APP_NAME)
MAIL_SERVER = os.getenv("MAIL_SERVER", "localhost")
MAIL_PORT = int(os.getenv("MAIL_PORT", 587))
MAIL_STARTTLS = os.getenv("MAIL_STARTTLS", "1").lower() in ("1", "true", "yes")
MAIL_SSL_TLS = os.getenv("MAIL_SSL_TLS", "0").lower() in ("1", "true", "yes")
# 1 builds messages without opening an SMTP connection
MAIL_SUPPRESS_SEND = int(os.getenv("MAIL_SUPPRESS_SEND", 0))

# File storage
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
DOWNLOAD_URL_EXPIRES = int(os.getenv("DOWNLOAD_URL_EXPIRES", 3600))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR") or None
LOG_JSON = os.getenv("LOG_JSON", "0").lower() in ("1", "true", "yes")
