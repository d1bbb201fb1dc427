"""Configuration management."""

import base64
import os
from pathlib import Path
from urllib.parse import quote

from pydantic import BaseModel, Field

from .errors import ConfigError


class SearchFilter(BaseModel):
    """Search criteria encoded into the listing index URL."""

    # Gross revenue band (whole dollars)
    min_gross_revenue: int | None = Field(
        default=750_000,
        description="Minimum gross revenue in dollars (e.g., 750000 = $750K)"
    )
    max_gross_revenue: int | None = Field(
        default=1_000_000,
        description="Maximum gross revenue in dollars"
    )

    def query_param(self) -> str | None:
        """Encode the filter as the base64 `q=` value the search page expects."""
        params = []
        if self.min_gross_revenue is not None:
            params.append(f"gifrom={self.min_gross_revenue}")
        if self.max_gross_revenue is not None:
            params.append(f"gito={self.max_gross_revenue}")
        if not params:
            return None
        encoded = base64.b64encode("&".join(params).encode()).decode()
        return quote(encoded, safe="")

    def with_overrides(
        self,
        min_gross_revenue: int | None = None,
        max_gross_revenue: int | None = None,
    ) -> "SearchFilter":
        """Create a new SearchFilter with optional overrides.

        Only non-None values override the defaults.
        """
        return SearchFilter(
            min_gross_revenue=min_gross_revenue if min_gross_revenue is not None else self.min_gross_revenue,
            max_gross_revenue=max_gross_revenue if max_gross_revenue is not None else self.max_gross_revenue,
        )


class CrawlSettings(BaseModel):
    """Retry, pacing and safety limits for a crawl run.

    Delay ranges are (min, max) seconds; a fresh value is drawn per request.
    """

    max_attempts: int = Field(default=3, ge=1)
    batch_size: int = Field(default=50, ge=1, le=50)

    detail_delay: tuple[float, float] = (2.0, 5.0)
    search_delay: tuple[float, float] = (3.0, 7.0)
    long_pause: tuple[float, float] = (10.0, 20.0)
    long_pause_every: int = Field(default=10, ge=1)

    # Retry backoff
    block_cooldown_seconds: float = 60.0
    index_block_cooldown: tuple[float, float] = (60.0, 90.0)
    transient_backoff_base: float = 5.0
    transient_backoff_step: float = 5.0
    linear_backoff_step: float = 5.0

    max_search_pages: int = Field(default=30, ge=1)
    max_runtime_minutes: float = Field(default=180.0, gt=0)
    teardown_timeout_seconds: float = 10.0
    page_timeout_ms: int = 30_000


class Config(BaseModel):
    """Application configuration."""

    # Project paths - config.py is at src/listing_index/config.py, so 3 parents up
    project_root: Path = Path(__file__).parent.parent.parent
    data_dir: Path = project_root / "data"
    checkpoint_path: Path = data_dir / ".checkpoint.json"
    browser_profile_dir: Path = data_dir / ".chrome-profile"

    source_id: str = "bizbuysell"
    base_url: str = "https://www.bizbuysell.com"

    # Browser settings
    headless: bool = True
    browser_channel: str | None = "chrome"

    log_level: str = "INFO"

    crawl: CrawlSettings = Field(default_factory=CrawlSettings)
    search: SearchFilter = Field(default_factory=SearchFilter)

    def ensure_dirs(self) -> None:
        """Ensure required directories exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.checkpoint_path.parent.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "Config":
        """Build config from environment variables (call load_dotenv() first)."""
        env = os.environ if environ is None else environ
        base = cls()
        crawl_updates: dict = {}
        if env.get("CRAWL_MAX_RUNTIME_MINUTES"):
            crawl_updates["max_runtime_minutes"] = float(env["CRAWL_MAX_RUNTIME_MINUTES"])
        if env.get("CRAWL_BATCH_SIZE"):
            crawl_updates["batch_size"] = int(env["CRAWL_BATCH_SIZE"])

        updates: dict = {
            "headless": env.get("HEADED", "0") != "1",
            "log_level": env.get("LOG_LEVEL", base.log_level).upper(),
            "crawl": CrawlSettings.model_validate({**base.crawl.model_dump(), **crawl_updates}),
        }
        if env.get("CHECKPOINT_PATH"):
            updates["checkpoint_path"] = Path(env["CHECKPOINT_PATH"])
        return cls.model_validate({**base.model_dump(), **updates})


class GatewaySettings(BaseModel):
    """Connection parameters for the persistence gateway."""

    backend: str = Field(..., description="'supabase' or 'sqlite'")
    supabase_url: str | None = None
    supabase_key: str | None = None
    db_path: Path | None = None

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "GatewaySettings":
        """Resolve gateway settings. Missing parameters are a fatal startup error."""
        env = os.environ if environ is None else environ
        url = env.get("SUPABASE_URL", "").strip()
        key = env.get("SUPABASE_SERVICE_ROLE_KEY", "").strip()
        db_path = env.get("LISTING_DB_PATH", "").strip()

        if url:
            if not key:
                raise ConfigError("SUPABASE_URL is set but SUPABASE_SERVICE_ROLE_KEY is missing")
            return cls(backend="supabase", supabase_url=url, supabase_key=key)
        if db_path:
            return cls(backend="sqlite", db_path=Path(db_path))
        raise ConfigError(
            "Missing persistence configuration: set SUPABASE_URL and "
            "SUPABASE_SERVICE_ROLE_KEY, or LISTING_DB_PATH"
        )


# Global config instance
config = Config()
