from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    PROJECT_NAME: str = "PriceVault"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"

    # Database (sqlite for local dev, postgres URL in production)
    DATABASE_URL: str = "sqlite:///./pricevault.db"

    # Shared secret for the scheduler trigger and admin endpoints.
    # Empty means every secret-protected call is rejected.
    CRON_SECRET: str = ""

    # Card provider (JustTCG)
    JUSTTCG_API_KEY: str = ""
    JUSTTCG_API_BASE: str = "https://api.justtcg.com/v1"
    JUSTTCG_GAME: str = "pokemon"

    # Sealed-product provider (PokemonPriceTracker)
    POKEMON_PRICE_API_KEY: str = ""
    POKEMON_PRICE_API_BASE: str = "https://www.pokemonpricetracker.com"

    # HTML price vendor (PriceCharting)
    PRICECHARTING_BASE: str = "https://www.pricecharting.com"
    PRICECHARTING_CATEGORY: str = "pokemon-cards"
    PRICECHARTING_COMIC_CATEGORY: str = "comic-books"

    # HTTP behaviour
    HTTP_TIMEOUT_SECONDS: float = 12.0
    SCRAPER_CACHE_TTL_SECONDS: int = 3600  # 1 hour, matches vendor revalidation
    SCRAPER_CACHE_MAXSIZE: int = 512
    SCRAPER_DETAIL_CONCURRENCY: int = 4
    SCRAPER_BATCH_DELAY_SECONDS: float = 1.0  # Between scraper calls in a refresh batch
    GRADED_SEARCH_LIMIT: int = 3
    COMIC_SEARCH_LIMIT: int = 5

    # Price refresh
    PRICE_STALE_HOURS: int = 24
    PROVIDER_SEARCH_LIMIT: int = 5

    # Scheduler
    RUN_SCHEDULER: bool = False
    RECORD_PRICES_HOUR: int = 6  # UTC hour for the daily recording job

    # Error tracking
    SENTRY_DSN: str = ""

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra="ignore")


settings = Settings()
