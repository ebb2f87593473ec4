"""
Application Configuration

Environment-driven settings shared by the API modules.
Values are read once from the process environment (and a local .env file).
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

JWT_SECRET = os.getenv("JWT_SECRET", "change-me-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRATION_DAYS = int(os.getenv("JWT_EXPIRATION_DAYS", 7))

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
SITE_DOMAIN = os.getenv("SITE_DOMAIN", "http://localhost:5173")

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 8000))

IS_PRODUCTION = ENVIRONMENT == "production"


def check_production_settings():
    if IS_PRODUCTION and JWT_SECRET == "change-me-in-production":  # noqa: S105
        raise RuntimeError("JWT_SECRET must be changed in production")
