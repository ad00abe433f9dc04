"""Configuration for crawlgate."""

from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from crawlgate.domain.enums import PlanTier
from crawlgate.domain.models import UNLIMITED, PlanLimits, RateLimitRule
from crawlgate.queue.models import QueueConfig

# Project root (three levels up from src/crawlgate/config.py)
_PROJECT_ROOT = Path(__file__).parent.parent.parent

# Load .env file into os.environ
load_dotenv(_PROJECT_ROOT / ".env")


def default_queue_configs() -> list[QueueConfig]:
    return [
        QueueConfig(
            queue_name="web-scraping",
            max_workers=5,
            max_queue_size=1000,
            concurrency=3,
            delay_between_jobs=1000,
            retry_attempts=3,
            retry_delay=5000,
            description="Queue for web scraping operations",
        ),
        QueueConfig(
            queue_name="image-extraction",
            max_workers=3,
            max_queue_size=500,
            concurrency=2,
            delay_between_jobs=2000,
            retry_attempts=2,
            retry_delay=3000,
            description="Queue for image extraction and analysis",
        ),
        QueueConfig(
            queue_name="content-analysis",
            max_workers=2,
            max_queue_size=300,
            concurrency=1,
            delay_between_jobs=3000,
            retry_attempts=3,
            retry_delay=5000,
            description="Queue for content analysis operations",
        ),
        QueueConfig(
            queue_name="seo-analysis",
            max_workers=2,
            max_queue_size=200,
            concurrency=1,
            delay_between_jobs=2000,
            retry_attempts=2,
            retry_delay=4000,
            description="Queue for SEO analysis operations",
        ),
        QueueConfig(
            queue_name="performance-analysis",
            max_workers=1,
            max_queue_size=100,
            concurrency=1,
            delay_between_jobs=5000,
            retry_attempts=2,
            retry_delay=6000,
            description="Queue for performance analysis operations",
        ),
    ]


def default_plan_limits() -> dict[PlanTier, PlanLimits]:
    return {
        PlanTier.FREE: PlanLimits(),
        PlanTier.STARTER: PlanLimits(
            max_projects=100,
            max_pages_per_project=1000,
            max_concurrent_crawls=2,
            max_workers=2,
            rate_limit_per_minute=200,
            storage_gb=5,
            monthly_crawl_limit=500,
        ),
        PlanTier.PROFESSIONAL: PlanLimits(
            max_projects=500,
            max_pages_per_project=5000,
            max_concurrent_crawls=5,
            max_workers=5,
            rate_limit_per_minute=500,
            storage_gb=25,
            monthly_crawl_limit=2000,
        ),
        PlanTier.ENTERPRISE: PlanLimits(
            max_projects=UNLIMITED,
            max_pages_per_project=UNLIMITED,
            max_concurrent_crawls=20,
            max_workers=20,
            rate_limit_per_minute=2000,
            storage_gb=100,
            monthly_crawl_limit=UNLIMITED,
        ),
    }


def default_rate_limit_rules() -> list[RateLimitRule]:
    return [
        RateLimitRule(route="/api/scrape/start", limit=10, burst_limit=5),
        RateLimitRule(route="/api/audit-projects", limit=100, burst_limit=30),
        RateLimitRule(route="/api/audit-projects/*/analyze", limit=50, burst_limit=15),
        RateLimitRule(route="/api/admin/*", limit=200, burst_limit=60),
    ]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=str(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        env_prefix="CRAWLGATE_",
        extra="ignore",
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    # Paths / database
    data_dir: Path = Field(
        default_factory=lambda: Path.home() / ".crawlgate" / "data",
        description="Directory for the SQLite database",
    )
    database_url: str | None = Field(default=None)

    # Operator auth stand-in; admin routes are open when empty
    admin_token: str = Field(default="")

    # Queues
    queues: list[QueueConfig] = Field(default_factory=default_queue_configs)
    dispatcher_poll_interval_seconds: float = Field(
        default=1.0, description="Upper bound on how long a dispatcher sleeps between cycles"
    )
    job_retention_seconds: float = Field(
        default=3600.0, description="Terminal jobs older than this are evicted from history"
    )
    job_history_limit: int = Field(default=100, description="Terminal jobs kept per queue")
    starvation_threshold: int = Field(
        default=10, description="Selections within which a waiting tier is always served"
    )

    # Tenants
    plan_limits: dict[PlanTier, PlanLimits] = Field(default_factory=default_plan_limits)

    # Rate limiting
    rate_limit_window_seconds: float = 60.0
    rate_limit_burst_window_seconds: float = 10.0
    rate_limit_default: int = Field(default=100, description="Per-window ceiling for unmatched routes")
    rate_limit_default_burst: int = Field(default=30)
    rate_limit_rules: list[RateLimitRule] = Field(default_factory=default_rate_limit_rules)
    rate_limit_sweep_interval_seconds: float = 300.0

    # Memory monitor
    memory_budget_bytes: int = Field(
        default=8 * 1024**3, description="Memory the process may use; pressure is relative to it"
    )
    memory_warning_ratio: float = Field(default=0.75, gt=0, lt=1)
    memory_critical_ratio: float = Field(default=0.875, gt=0, le=1)
    memory_monitor_enabled: bool = True
    memory_monitor_interval_ms: int = Field(default=30000, ge=100)

    # Default unit of work (HTTP fetch)
    fetch_timeout_seconds: float = 30.0
    fetch_user_agent: str = "crawlgate/0.1"

    def model_post_init(self, __context: object) -> None:
        """Set derived values after initialization."""
        if self.database_url is None:
            self.database_url = f"sqlite:///{self.data_dir / 'crawlgate.db'}"
        if self.memory_warning_ratio >= self.memory_critical_ratio:
            raise ValueError("memory_warning_ratio must be below memory_critical_ratio")

    def limits_for(self, tier: PlanTier) -> PlanLimits:
        return self.plan_limits.get(tier, PlanLimits())
