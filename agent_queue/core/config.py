from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    app_name: str = "SEO Agent Queue"
    app_version: str = "0.1.0"
    log_level: str = "INFO"

    database_scheme: str = "postgresql+psycopg"
    database_host: str = "localhost"
    database_port: int = 5432
    database_user: str = "seoagent"
    database_password: str = "seoagent_password"
    database_name: str = "seoagent"

    # Broker Configuration (Redis/arq)
    redis_url: str = "redis://localhost:6379"
    redis_max_connections: int = 50  # shared by queues, workers and events

    # Queue Configuration
    queue_prefix: str = "agentq"
    queue_job_attempts: int = 3
    queue_backoff_delay_seconds: float = 2.0  # doubles on every attempt
    queue_keep_completed: int = 100
    queue_keep_failed: int = 50
    queue_clean_grace_seconds: int = 86400  # 24 hours
    queue_default_priority: int = 50  # lower dispatches first
    queue_job_timeout_seconds: int = 3600  # stale-claim bound, not policy timeout
    queue_keep_result_seconds: int = 86400
    queue_job_expires_seconds: int = 86400
    worker_poll_delay_seconds: float = 0.5
    dry_run_delay_seconds: float = 1.0

    # Executor Configuration (collaborator services per category)
    agent_actions_url: str = ""
    content_generation_url: str = ""
    technical_seo_url: str = ""
    cms_publishing_url: str = ""
    verification_url: str = ""
    scheduled_tasks_url: str = ""
    executor_timeout_seconds: float = 120.0

    # Operations API
    api_key: str = ""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="AGENTQ_",
        extra="ignore",
    )

    @property
    def database_url(self) -> str:
        """Assemble a SQLAlchemy compatible database URL."""
        return (
            f"{self.database_scheme}://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @property
    def executor_urls(self) -> dict[str, str]:
        """Return configured collaborator URLs keyed by queue name."""

        urls = {
            "agent-actions": self.agent_actions_url,
            "content-generation": self.content_generation_url,
            "technical-seo": self.technical_seo_url,
            "cms-publishing": self.cms_publishing_url,
            "verification": self.verification_url,
            "scheduled-tasks": self.scheduled_tasks_url,
        }
        return {name: url.strip() for name, url in urls.items() if url.strip()}


@lru_cache
def get_settings() -> Settings:
    """Cache settings to avoid re-parsing environment files."""
    return Settings()
