"""GitLab Member Manager configuration settings."""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import structlog

logger = structlog.stdlib.get_logger().bind(component="config")


class GitLabSettings(BaseSettings):
    """GitLab connection settings.

    Environment Variables:
        GITLAB_BASE_URL: Base URL of the GitLab instance (no /api/v4 suffix)
        GITLAB_TOKEN: Personal or project access token sent as PRIVATE-TOKEN
        GITLAB_TIMEOUT_SECONDS: Per-request timeout for the HTTP transport
        GITLAB_USER_AGENT: User-Agent header sent with every request
        GITLAB_PER_PAGE: Page size used when walking a full member listing
    """

    BASE_URL: str = Field(default="https://gitlab.com", alias="GITLAB_BASE_URL")
    TOKEN: str = Field(default="", alias="GITLAB_TOKEN")
    TIMEOUT_SECONDS: int = Field(default=30, alias="GITLAB_TIMEOUT_SECONDS")
    USER_AGENT: str = Field(
        default="gitlab-member-manager/0.1", alias="GITLAB_USER_AGENT"
    )
    PER_PAGE: int = Field(default=100, alias="GITLAB_PER_PAGE")

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("BASE_URL", mode="after")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")

    @field_validator("PER_PAGE", mode="after")
    @classmethod
    def _clamp_per_page(cls, v: int) -> int:
        # GitLab caps per_page at 100
        if v < 1 or v > 100:
            logger.warning("gitlab_per_page_clamped", requested=v)
            return max(1, min(v, 100))
        return v

    @property
    def is_configured(self) -> bool:
        return bool(self.BASE_URL and self.TOKEN)


class StoreSettings(BaseSettings):
    """Local membership cache settings.

    Environment Variables:
        MEMBER_STORE_URL: SQLAlchemy database URL for the local cache
        MEMBER_STORE_ECHO: Echo SQL statements (debugging only)
    """

    URL: str = Field(
        default="sqlite:///gitlab_member_manager.sqlite3", alias="MEMBER_STORE_URL"
    )
    ECHO: bool = Field(default=False, alias="MEMBER_STORE_ECHO")

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
        populate_by_name=True,
    )


class ServerSettings(BaseSettings):
    """HTTP server settings."""

    HOST: str = "127.0.0.1"
    PORT: int = 8000

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )


class Settings(BaseSettings):
    """GitLab Member Manager configuration settings - main aggregator.

    Environment Variables:
        PREFIX: Environment prefix; empty means production
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
        GIT_SHA: Git commit SHA for deployment tracking
    """

    PREFIX: str = ""
    LOG_LEVEL: str = "INFO"
    GIT_SHA: str = "Unknown"

    gitlab: GitLabSettings
    store: StoreSettings
    server: ServerSettings

    @property
    def is_production(self) -> bool:
        """Check if the application is running in production.

        Returns:
            True if PREFIX is empty (production), False otherwise.
        """
        return not bool(self.PREFIX)

    def __init__(self, **kwargs):
        settings_map = {
            "gitlab": GitLabSettings,
            "store": StoreSettings,
            "server": ServerSettings,
        }

        for setting_name, setting_class in settings_map.items():
            if setting_name not in kwargs:
                kwargs[setting_name] = setting_class()

        super().__init__(**kwargs)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
