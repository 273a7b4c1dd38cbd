from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database (tabella api_providers): vuoto = solo configurazione di default
    database_url: str = ""

    # Redis (usato solo con cache_backend="redis")
    redis_url: str = "redis://localhost:6379/0"
    cache_backend: str = "memory"       # "memory" | "redis"

    # Flight Provider
    amadeus_api_key: str = ""
    amadeus_api_secret: str = ""
    amadeus_hostname: str = "test"      # "test" | "production"
    serpapi_api_key: str = ""

    # Ricerca
    currency: str = "USD"
    search_cache_ttl_seconds: int = Field(default=300, gt=0)
    max_results: int = Field(default=20, gt=0)

    # Euristiche di merge/inferenza: policy, non fisica
    dedup_price_bucket: float = Field(default=50, gt=0)
    class_threshold_premium_economy: float = Field(default=800, gt=0)
    class_threshold_business: float = Field(default=2000, gt=0)
    class_threshold_first: float = Field(default=5000, gt=0)

    # App
    app_env: str = "development"
    log_level: str = "INFO"

    class Config:
        env_file = ".env"


# Istanza globale usata in tutto il progetto
settings = Settings()
