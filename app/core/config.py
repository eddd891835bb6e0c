"""
Configuration management for the absence workflow service
"""
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import Optional, List


def _split_csv(value: str) -> List[str]:
    return [item.strip().lower() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Required settings
    DATABASE_URL: str = Field(..., description="PostgreSQL database URL")
    JWT_SECRET_KEY: str = Field(..., description="JWT secret key for token verification")

    # Optional settings with defaults
    JWT_ALGORITHM: str = Field(default="HS256", description="JWT algorithm")
    JWT_EXPIRE_MINUTES: int = Field(default=120, description="JWT token expiration in minutes")

    APP_ENV: str = Field(default="local", description="Application environment: local, staging, prod")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level: DEBUG, INFO, WARNING, ERROR")

    # CORS settings
    ALLOWED_ORIGINS: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins. Use '*' for local only."
    )

    # Payroll cutoffs are computed in local payroll time and stored in UTC
    PAYROLL_TIMEZONE: str = Field(default="America/Mexico_City", description="Timezone of payroll cutoffs")

    # Escalation sweeper defaults (passed explicitly into the core)
    ESCALATION_THRESHOLD_HOURS: int = Field(
        default=24,
        description="Hours a request may sit at one stage before the sweeper advances it",
    )
    ESCALATION_REASON: str = Field(
        default="stalled beyond threshold",
        description="Reason recorded on system-initiated escalations",
    )

    # Role configuration
    COMBINED_SUPERVISOR_ROLES: str = Field(
        default="sup_and_gm",
        description="Comma-separated roles that hold supervisor and general manager authority at once",
    )
    ADMIN_ROLES: str = Field(
        default="admin",
        description="Comma-separated roles with stage-independent administrative authority",
    )
    INCIDENCE_VIEW_ROLES: str = Field(
        default="payroll",
        description="Comma-separated roles that may list approved requests for payroll incidences",
    )
    UNIONIZED_EMPLOYEE_TYPES: str = Field(
        default="sindicalizado",
        description="Comma-separated employee types routed like blue/gray collar",
    )

    # Version (can be git SHA or semver)
    VERSION: Optional[str] = Field(default=None, description="Application version (git SHA or semver)")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True

    @field_validator("APP_ENV")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        """Validate APP_ENV"""
        allowed = ["local", "staging", "prod"]
        if v not in allowed:
            raise ValueError(f"APP_ENV must be one of {allowed}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate LOG_LEVEL"""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of {allowed}")
        return v.upper()

    @field_validator("ESCALATION_THRESHOLD_HOURS")
    @classmethod
    def validate_escalation_threshold(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("ESCALATION_THRESHOLD_HOURS must be positive")
        return v

    def validate_production(self) -> None:
        """
        Validate settings for production environment

        Raises:
            ValueError: If production settings are invalid
        """
        if self.APP_ENV == "prod":
            # JWT_SECRET_KEY must be at least 32 characters in production
            if len(self.JWT_SECRET_KEY) < 32:
                raise ValueError(
                    "JWT_SECRET_KEY must be at least 32 characters in production environment"
                )

            # ALLOWED_ORIGINS must not be wildcard in production
            if self.ALLOWED_ORIGINS == "*" or not self.ALLOWED_ORIGINS:
                raise ValueError(
                    "ALLOWED_ORIGINS must be explicitly set (not '*') in production environment"
                )

    def get_allowed_origins_list(self) -> List[str]:
        """
        Get list of allowed CORS origins

        Returns:
            List of allowed origins (or ['*'] for local)
        """
        if self.ALLOWED_ORIGINS == "*":
            return ["*"]
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    def get_combined_supervisor_roles(self) -> List[str]:
        return _split_csv(self.COMBINED_SUPERVISOR_ROLES)

    def get_admin_roles(self) -> List[str]:
        return _split_csv(self.ADMIN_ROLES)

    def get_incidence_view_roles(self) -> List[str]:
        return _split_csv(self.INCIDENCE_VIEW_ROLES)

    def get_unionized_employee_types(self) -> List[str]:
        return _split_csv(self.UNIONIZED_EMPLOYEE_TYPES)


# Create settings instance
settings = Settings()

# Validate production settings if in prod
if settings.APP_ENV == "prod":
    settings.validate_production()
