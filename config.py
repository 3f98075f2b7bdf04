import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass
class Settings:
    # Database
    database_url: str = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
    database_name: str = os.getenv("DATABASE_NAME", "biblioteca")
    database_timeout_ms: int = int(os.getenv("DATABASE_TIMEOUT_MS", "5000"))

    # Session tokens
    jwt_secret: str = os.getenv("JWT_SECRET", "change-this-secret-in-production")
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
    jwt_expiration_minutes: int = int(os.getenv("JWT_EXPIRATION_MINUTES", "120"))  # 2 hours

    # Credentials
    bcrypt_rounds: int = int(os.getenv("BCRYPT_ROUNDS", "10"))

    # HTTP
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8000"))
    cors_origin: str = os.getenv("CORS_ORIGIN", "*")

    # Application
    environment: str = os.getenv("ENVIRONMENT", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
