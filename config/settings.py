"""
=====================================================
Support Line - Configuration Module
=====================================================
Centralized configuration management using pydantic-settings
"""

import json
from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True
    )

    # =====================================================
    # APPLICATION
    # =====================================================
    app_name: str = "Support Line"
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: str = Field(default="logs/support-line.log", alias="LOG_FILE")
    debug: bool = False

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    # Store as string internally to avoid JSON parsing issues
    allowed_origins_str: str = Field(
        default="http://localhost:3000,http://localhost:8000",
        alias="ALLOWED_ORIGINS"
    )

    # =====================================================
    # DATABASE
    # =====================================================
    # Empty means the in-memory store (development and tests)
    database_url: str = Field(default="", alias="DATABASE_URL")
    db_pool_min_size: int = 2
    db_pool_max_size: int = 10
    db_auto_create_schema: bool = Field(default=True, alias="DB_AUTO_CREATE_SCHEMA")

    # =====================================================
    # TWILIO
    # =====================================================
    twilio_auth_token: str = Field(default="", alias="TWILIO_AUTH_TOKEN")
    validate_twilio_signature: bool = Field(default=False, alias="VALIDATE_TWILIO_SIGNATURE")
    public_domain: str = Field(default="", alias="PUBLIC_DOMAIN")
    webhook_path: str = Field(default="/api/twilio/webhook", alias="WEBHOOK_PATH")
    tts_voice: str = Field(default="alice", alias="TTS_VOICE")
    gather_speech_timeout: str = "3"
    gather_timeout: int = 10
    dial_timeout: int = 30

    # =====================================================
    # OPENAI
    # =====================================================
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-4o", alias="OPENAI_MODEL")
    openai_extraction_model: str = Field(default="gpt-4o", alias="OPENAI_EXTRACTION_MODEL")
    openai_temperature: float = 0.7
    openai_max_tokens: int = 150
    openai_extraction_max_tokens: int = 400

    # Hard deadlines for the two external calls made during a webhook
    llm_timeout_seconds: float = Field(default=10.0, alias="LLM_TIMEOUT_SECONDS")
    extraction_timeout_seconds: float = Field(default=10.0, alias="EXTRACTION_TIMEOUT_SECONDS")

    # =====================================================
    # SPECIALISTS
    # =====================================================
    # Empty means no roster is seeded; see clients/specialists.example.yaml
    specialist_roster_path: str = Field(default="", alias="SPECIALIST_ROSTER_PATH")
    specialist_assign_attempts: int = Field(default=3, alias="SPECIALIST_ASSIGN_ATTEMPTS")
    emergency_line: str = Field(default="988", alias="EMERGENCY_LINE")

    # =====================================================
    # PROPERTIES
    # =====================================================
    @property
    def allowed_origins(self) -> List[str]:
        """Get allowed origins as a list"""
        return self._parse_origins_string(self.allowed_origins_str)

    def _parse_origins_string(self, origins_str: str) -> List[str]:
        """Parse origins from comma-separated string"""
        if not origins_str:
            return ["http://localhost:3000", "http://localhost:8000"]

        # JSON list form is accepted too
        try:
            parsed = json.loads(origins_str)
            if isinstance(parsed, list):
                return parsed
        except (json.JSONDecodeError, TypeError):
            pass

        origins = [origin.strip() for origin in origins_str.split(',')]
        return [o for o in origins if o]


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get settings instance (for dependency injection)"""
    return settings
