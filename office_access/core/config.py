from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
import json

DEFAULT_SQLITE_URL = "sqlite:///./office_access.db"


class Settings(BaseSettings):
    # Application Settings
    app_name: str = Field(default="Office Access Service", alias="APP_NAME")
    app_version: str = Field(default="1.0.0", alias="APP_VERSION")
    ENVIRONMENT: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    # Database Configuration
    # Setting DB_HOST (without DATABASE_URL) selects PostgreSQL built from the DB_* parts
    DB_HOST: Optional[str] = Field(default=None, alias="DB_HOST")
    DB_PORT: int = Field(default=5432, alias="DB_PORT")
    DB_NAME: str = Field(default="office_access", alias="DB_NAME")
    DB_USER: str = Field(default="office_access", alias="DB_USER")
    DB_PASSWORD: str = Field(default="office_access", alias="DB_PASSWORD")
    database_url: Optional[str] = Field(default=None, alias="DATABASE_URL")

    # JWT Authentication
    JWT_SECRET: str = Field(default="your-super-secret-jwt-key-change-this-in-production", alias="JWT_SECRET")
    JWT_ALGORITHM: str = Field(default="HS256", alias="JWT_ALGORITHM")
    JWT_EXPIRATION_HOURS: int = Field(default=24, alias="JWT_EXPIRATION_HOURS")

    # CORS Configuration
    API_CORS_ORIGINS: Optional[str] = Field(default=None, alias="API_CORS_ORIGINS")
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"],
                                    validate_default=True)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="%(asctime)s - %(name)s - %(levelname)s - %(message)s", alias="LOG_FORMAT")

    # Passcode issuance defaults
    passcode_default_duration_minutes: int = Field(default=1440, alias="PASSCODE_DEFAULT_DURATION")
    passcode_default_usage_limit: int = Field(default=10, alias="PASSCODE_DEFAULT_USAGE_LIMIT")
    passcode_time_window_minutes: int = Field(default=5, alias="PASSCODE_TIME_WINDOW")

    # QR payload encryption
    qr_secret: str = Field(default="office-access-qrcode-secret-change-me", alias="QR_SECRET")
    qr_kdf_salt: str = Field(default="b2ZmaWNlLWFjY2Vzcy1xci1zYWx0", alias="QR_KDF_SALT")  # base64
    qr_kdf_iterations: int = Field(default=200_000, alias="QR_KDF_ITERATIONS")

    # Maintenance loop (expiry sweep + record retention)
    maintenance_enabled: bool = Field(default=True, alias="MAINTENANCE_ENABLED")
    maintenance_interval_seconds: int = Field(default=5 * 60, alias="MAINTENANCE_INTERVAL_SECONDS")
    access_record_retention_days: int = Field(default=90, alias="ACCESS_RECORD_RETENTION_DAYS")

    # Realtime device status
    device_online_window_minutes: int = Field(default=5, alias="DEVICE_ONLINE_WINDOW_MINUTES")

    # Pagination
    default_page_size: int = Field(default=10, alias="DEFAULT_PAGE_SIZE")
    max_page_size: int = Field(default=100, alias="MAX_PAGE_SIZE")

    @field_validator('cors_origins', mode='before')
    @classmethod
    def parse_cors_origins(cls, v, info):
        # Check if API_CORS_ORIGINS is set (from environment)
        api_cors = info.data.get('API_CORS_ORIGINS')
        source = api_cors if api_cors else v
        if isinstance(source, str):
            # Handle wildcard for all origins
            if source.strip() == "*":
                return ["*"]
            try:
                return json.loads(source)
            except json.JSONDecodeError:
                return [origin.strip() for origin in source.split(',') if origin.strip()]
        return source

    @field_validator('LOG_LEVEL', mode='before')
    @classmethod
    def normalize_log_level(cls, v):
        return str(v).upper()

    @property
    def DATABASE_URL(self) -> str:
        if self.database_url:
            return self.database_url
        if self.DB_HOST:
            return (
                f"postgresql+psycopg2://{self.DB_USER}:{self.DB_PASSWORD}"
                f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
            )
        return DEFAULT_SQLITE_URL

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def database_echo(self) -> bool:
        return self.debug and self.is_development

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        populate_by_name = True

# Global settings instance
settings = Settings()
