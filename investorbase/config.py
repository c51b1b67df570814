from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str
    perplexity_api_key: str = ""
    perplexity_api_url: str = "https://api.perplexity.ai/chat/completions"
    perplexity_model: str = "sonar"
    research_timeout_seconds: float = 300.0
    research_max_tokens: int = 2000
    investor_research_model: str = "sonar-deep-research"
    investor_research_max_tokens: int = 4000
    default_company_stage: str = "Seed"
    research_temperature: float = 0.2
    research_recency_filter: str = "month"
    research_domain_filter: str = (
        "news.google.com,bloomberg.com,forbes.com,wsj.com,ft.com,cnbc.com,reuters.com,techcrunch.com"
    )
    serialize_research_per_company: bool = False
    rate_limit_enabled: bool = True
    research_rate_limit: str = "10/minute"
    scheduler_enabled: bool = True
    stale_research_sweep_minutes: int = 15
    stale_research_grace_seconds: int = 120
    sentry_dsn: str = ""
    environment: str = ""
    debug: bool = False
    frontend_url: str = "http://localhost:3000"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def async_database_url(self) -> str:
        """Hosted Postgres URLs (postgres://, postgresql://) rewritten for asyncpg."""
        for prefix in ("postgres://", "postgresql://"):
            if self.database_url.startswith(prefix):
                return "postgresql+asyncpg://" + self.database_url[len(prefix):]
        return self.database_url

    @property
    def research_domain_list(self) -> list[str]:
        return [d.strip() for d in self.research_domain_filter.split(",") if d.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
