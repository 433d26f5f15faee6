"""Configuration for the Elasticsearch metrics exporter"""
from pathlib import Path
from typing import Dict, Literal, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Config(BaseSettings):
    """Exporter configuration with Pydantic validation and environment-based settings"""

    model_config = SettingsConfigDict(env_prefix="METRICS_ELASTIC_", case_sensitive=False)

    # Elasticsearch destination (required)
    url: str = Field(..., description="Elasticsearch index URL, may embed user:password@")
    user: Optional[str] = Field(default=None, description="Elasticsearch user (overrides URL credentials)")
    password: str = Field(default="", description="Elasticsearch password")
    timeout: float = Field(default=0.0, ge=0, description="Connect and request timeout in seconds, 0 for client default")
    insecure: bool = Field(default=False, description="Skip TLS certificate validation")

    # Export cycle
    export_interval: int = Field(default=3, ge=1, description="Export interval in seconds")
    export_timeout: float = Field(default=10.0, gt=0, description="Export call timeout in seconds")
    shutdown_grace_period: float = Field(default=5.0, ge=0, description="Seconds to wait for in-flight exports on shutdown")
    max_workers: int = Field(default=2, ge=1, description="Worker threads delivering bulk requests")

    # Service settings
    service_name: str = Field(default="elastic-metrics-exporter", description="Service name")
    service_version: str = Field(default="1.0.0", description="Service version")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO", description="Log level")
    log_file: Optional[Path] = Field(default=None, description="Log file path, console only when unset")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v):
        if not v or not v.strip():
            raise ValueError("METRICS_ELASTIC_URL is required")
        return v.strip()

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        if isinstance(v, str):
            return v.upper()
        return v

    def get_credentials(self):
        """Get explicit credentials, None when they should come from the URL"""
        from elastic_metrics.transport import Credentials

        if self.user:
            return Credentials(self.user, self.password)
        return None

    def get_resource_attributes(self) -> Dict[str, str]:
        """Get OpenTelemetry resource attributes"""
        return {
            "service.name": self.service_name,
            "service.version": self.service_version,
        }
