"""
Application Configuration Module.

Manages application settings and environment variables using Pydantic for validation.
Provides centralized configuration management with type safety and validation.

Features:
- Environment variable loading and validation
- Secure credential management
- Sync cadence and GitLab client tuning
- Scheduled report settings
"""

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional
import os
from logger import LogManager


class Settings(BaseSettings):
    """
    Application configuration settings with validation.

    Attributes:
        app_name (str): Name of the application
        dev (bool): Development mode flag, switches logs to readable text
        log_dir (str): Directory for log files
        log_level (int): Logging level (default: info)
        data_dir (str): Directory for cache files
        projects_file (str): JSON file holding the configured projects
        commit_pull_interval (float): Seconds between commit pulls
        comment_pull_interval (float): Seconds between comment pulls
        gitlab_timeout (float): Timeout for a single GitLab request
        gitlab_page_size (int): Page size for paginated GitLab endpoints
        gitlab_max_requests (int): Requests allowed per rate period and operation
        gitlab_rate_period (float): Rate limit window in seconds
        gitlab_retry_attempts (int): Attempts for transient GitLab failures
        feishu_webhook_url (SecretStr): Chat webhook receiving reports
        report_enabled (bool): Whether scheduled reports run
        report_cron (str): Report schedule
        report_type (str): "all" for a summary, "individual" for one per project
        report_project_ids (str): Comma-separated project ids for individual reports
    """

    # Application settings
    app_name: str = Field(default="ReviewTracker", description="Application name")
    dev: bool = Field(default=False, description="Development mode")
    log_dir: str = Field(default="logs", description="Logging directory")
    log_level: int = Field(default=20, description="Logging level, default info")

    # Storage
    data_dir: str = Field(default="data", description="Cache directory")
    projects_file: str = Field(
        default="data/projects.json", description="Configured projects"
    )

    # Sync cadences
    commit_pull_interval: float = Field(
        default=300, gt=0, description="Commit pull interval in seconds"
    )
    comment_pull_interval: float = Field(
        default=10, gt=0, description="Comment pull interval in seconds"
    )

    # GitLab client
    gitlab_timeout: float = Field(default=10, gt=0, description="Request timeout")
    gitlab_page_size: int = Field(default=100, gt=0, le=100, description="Page size")
    gitlab_max_requests: int = Field(
        default=300, gt=0, description="Max requests per period and operation"
    )
    gitlab_rate_period: float = Field(default=60, gt=0, description="Rate period")
    gitlab_retry_attempts: int = Field(default=3, ge=1, description="Retry attempts")

    # Reports
    feishu_webhook_url: Optional[SecretStr] = Field(
        default=None, description="Feishu bot webhook URL"
    )
    report_enabled: bool = Field(default=False, description="Scheduled reports")
    report_cron: str = Field(default="0 9 * * *", description="Report schedule")
    report_type: str = Field(default="all", description="Report type")
    report_project_ids: str = Field(
        default="", description="Comma-separated project ids for individual reports"
    )

    # HTTP server
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=3001, description="Bind port")

    @property
    def report_projects(self) -> List[str]:
        """
        Get project ids for individual reports.

        Returns:
            List[str]: Cleaned project ids
        """
        return [pid.strip() for pid in self.report_project_ids.split(",") if pid.strip()]

    @field_validator("report_type")
    def check_report_type(cls, v: str) -> str:
        if v not in ("all", "individual"):
            raise ValueError("report_type must be 'all' or 'individual'")
        return v

    @field_validator("data_dir")
    def ensure_absolute_path(cls, v: str) -> str:
        """
        Ensure data directory path is absolute.

        Args:
            v (str): Directory path to validate

        Returns:
            str: Absolute path to the data directory
        """
        if not os.path.isabs(v):
            return os.path.abspath(v)
        return v

    # Configure env file loading
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra fields in .env file
    )


# Create global settings instance
settings = Settings()

# Initialize logging configuration
logger = LogManager(
    app_name=settings.app_name.lower(),
    log_dir=settings.log_dir,
    development=settings.dev,
    level=settings.log_level,
).logger
