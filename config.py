import os
from dotenv import load_dotenv

load_dotenv()

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./blogify.db")

SECRET_KEY = os.getenv("SECRET_KEY")
REFRESH_SECRET_KEY = os.getenv("REFRESH_SECRET_KEY")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "15"))
REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7"))
TOKEN_ISSUER = os.getenv("TOKEN_ISSUER", "blogify-api")
TOKEN_AUDIENCE = os.getenv("TOKEN_AUDIENCE", "blogify-client")
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

if ENVIRONMENT == "production":
    if not SECRET_KEY or not REFRESH_SECRET_KEY:
        raise ValueError("SECRET_KEY and REFRESH_SECRET_KEY environment variables are required!")
else:
    SECRET_KEY = SECRET_KEY or "dev_blogify_access_token_secret_key"
    REFRESH_SECRET_KEY = REFRESH_SECRET_KEY or "dev_blogify_refresh_token_secret_key"

REFRESH_COOKIE_NAME = "refreshToken"
REFRESH_COOKIE_PATH = os.getenv("REFRESH_COOKIE_PATH", "/api/auth")
COOKIE_DOMAIN = os.getenv("COOKIE_DOMAIN") or None

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5001,http://127.0.0.1:5001",
    ).split(",")
    if origin.strip()
]

POST_FLOOD_MAX = int(os.getenv("POST_FLOOD_MAX", "5"))
POST_FLOOD_WINDOW_MINUTES = int(os.getenv("POST_FLOOD_WINDOW_MINUTES", "20"))
COMMENT_FLOOD_MAX = int(os.getenv("COMMENT_FLOOD_MAX", "20"))
COMMENT_FLOOD_WINDOW_MINUTES = int(os.getenv("COMMENT_FLOOD_WINDOW_MINUTES", "10"))

MAX_UPLOAD_SIZE = int(os.getenv("MAX_UPLOAD_SIZE", str(5 * 1024 * 1024)))

AWS_KEY_ID = os.getenv("AWS_KEY_ID")
AWS_SECRET_KEY = os.getenv("AWS_SECRET_KEY")
S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL", "https://storage.yandexcloud.net")
S3_REGION = os.getenv("S3_REGION", "ru-central1")
S3_BUCKET = os.getenv("S3_BUCKET", "blogify")
S3_PUBLIC_URL = os.getenv("S3_PUBLIC_URL", f"{S3_ENDPOINT_URL}/{S3_BUCKET}")
