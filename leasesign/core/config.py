## leasesign/core/config.py

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


DOCUSIGN_OAUTH_BASES = {
    "demo": "https://account-d.docusign.com",
    "production": "https://account.docusign.com",
}

DOCUSIGN_API_BASES = {
    "demo": "https://demo.docusign.net",
    "production": "https://www.docusign.net",
}


class Settings(BaseSettings):
    """
    Settings for the application
    """

    model_config = SettingsConfigDict(
        env_file=".env", extra="ignore", case_sensitive=False
    )

    environment: str = "development"
    allowed_cors_urls: str = "http://localhost:3000"
    log_level: str = "INFO"
    log_file: Optional[str] = None

    database_url: str = "sqlite:///./leasesign.db"

    redis_host: str = "localhost"
    redis_port: str = "6379"
    redis_username: Optional[str] = None
    redis_password: Optional[str] = None

    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_region: str = "us-east-1"
    aws_ses_sender_email: Optional[str] = None
    aws_ses_configuration_set: Optional[str] = None
    s3_bucket_name: str = "leasesign-documents"
    s3_connect_timeout_seconds: int = 5
    s3_read_timeout_seconds: int = 30
    s3_max_attempts: int = 3

    app_base_url: str = "http://localhost:8000"
    frontend_url: str = "http://localhost:3000"

    secret_key: str = "change-me"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    # Native signing links
    signing_token_ttl_hours: int = 24
    landlord_reminder_window_days: int = 7
    landlord_reminder_interval_hours: int = 24

    # Docusign integration
    docusign_environment: str = "demo"
    docusign_integration_key: Optional[str] = None
    docusign_secret_key: Optional[str] = None
    docusign_redirect_uri: str = "http://localhost:8000/esign/callback"
    docusign_webhook_secret: Optional[str] = None
    docusign_connect_webhook_url: Optional[str] = None
    docusign_http_timeout_seconds: int = 30
    docusign_connect_timeout_seconds: int = 10
    docusign_max_retries: int = 3
    docusign_token_refresh_margin_seconds: int = 60

    oauth_cookie_max_age_seconds: int = 600
    oauth_cookie_secure: bool = True

    @property
    def docusign_oauth_base(self) -> str:
        """
        OAuth host for the configured Docusign environment
        """
        return DOCUSIGN_OAUTH_BASES.get(
            self.docusign_environment.lower(), DOCUSIGN_OAUTH_BASES["demo"]
        )

    @property
    def docusign_api_base(self) -> str:
        """
        Fallback REST host when the account's base URI is not yet known
        """
        return DOCUSIGN_API_BASES.get(
            self.docusign_environment.lower(), DOCUSIGN_API_BASES["demo"]
        )

    @property
    def redis_url(self) -> str:
        """
        Redis connection URL
        """
        if self.redis_username and self.redis_password:
            return f"redis://{self.redis_username}:{self.redis_password}@{self.redis_host}:{self.redis_port}"
        elif self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}"
        else:
            return f"redis://{self.redis_host}:{self.redis_port}"

    @property
    def celery_broker(self) -> str:
        """
        Celery broker URL
        """
        return f"{self.redis_url}/1"

    @property
    def celery_backend(self) -> str:
        """
        Celery backend URL
        """
        return f"{self.redis_url}/2"


settings = Settings()
