from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import model_validator
from typing import Optional


class Settings(BaseSettings):
    """
    Main configuration for costguard.
    Uses Pydantic-Settings for environment variable parsing from .env.
    """
    APP_NAME: str = "costguard"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # local, development, staging, production

    @model_validator(mode='after')
    def validate_notification_config(self) -> 'Settings':
        """Warn when Slack is only half configured (delivery would be skipped)."""
        if bool(self.SLACK_BOT_TOKEN) != bool(self.SLACK_CHANNEL_ID):
            import structlog
            structlog.get_logger().warning(
                "slack_partially_configured",
                has_token=bool(self.SLACK_BOT_TOKEN),
                has_channel=bool(self.SLACK_CHANNEL_ID),
                msg="Both SLACK_BOT_TOKEN and SLACK_CHANNEL_ID are required for delivery"
            )
        return self

    # AWS
    AWS_DEFAULT_REGION: str = "us-east-1"
    AWS_ENDPOINT_URL: Optional[str] = None  # Local testing (MotoServer/LocalStack)
    COST_EXPLORER_REGION: str = "us-east-1"  # Cost Explorer endpoint only lives in us-east-1

    # Notifications
    SLACK_BOT_TOKEN: Optional[str] = None
    SLACK_CHANNEL_ID: Optional[str] = None

    # Report shape
    COST_TAG_KEY: str = "Project"  # e.g. "Project", "Environment"; empty disables the tag section
    LOOKBACK_DAYS: int = 7
    METRIC_PERIOD_SECONDS: int = 3600
    CPU_IDLE_THRESHOLD_PERCENT: float = 5.0
    TOP_N: int = 10

    # Collaborator limits
    MAX_CONCURRENT_METRIC_FETCHES: int = 5
    CLOUDWATCH_RATE_PER_SECOND: float = 5.0
    CATEGORY_TIMEOUT_SECONDS: int = 120

    # DynamoDB on-demand pricing (USD, us-east-1)
    DYNAMODB_READ_PRICE_PER_MILLION: float = 0.25
    DYNAMODB_WRITE_PRICE_PER_MILLION: float = 1.25
    DYNAMODB_STORAGE_PRICE_PER_GB_MONTH: float = 0.25

    # Scheduler
    SCHEDULER_HOUR: int = 8
    SCHEDULER_MINUTE: int = 0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True
    )

    @property
    def slack_configured(self) -> bool:
        return bool(self.SLACK_BOT_TOKEN and self.SLACK_CHANNEL_ID)


@lru_cache
def get_settings():
    """Returns a singleton instance of the application settings."""
    return Settings()
