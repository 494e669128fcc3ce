"""Configuration settings for the application."""
from functools import lru_cache
from typing import List, Optional, Tuple

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Language model (OpenAI-compatible chat completions endpoint)
    llm_api_url: str = "https://api.3d7tech.com/v1/chat/completions"
    llm_api_key: Optional[str] = None
    llm_model: str = "local-model"
    llm_temperature: float = 0.0
    llm_timeout: float = 45.0
    llm_max_attempts: int = 3
    llm_retry_base_delay: float = 1.0
    # Preference parsing is a single short call
    preferences_max_attempts: int = 2
    preferences_retry_base_delay: float = 0.5

    # Weather (Open-Meteo) and air quality (WAQI)
    weather_api_url: str = "https://api.open-meteo.com/v1/forecast"
    aqi_api_url: str = "https://api.waqi.info/feed"
    aqi_api_token: str = "demo"
    environment_timeout: float = 10.0

    # Geocoding (Nominatim) - ~1 request/second, always routed through the queue
    nominatim_url: str = "https://nominatim.openstreetmap.org"
    nominatim_user_agent: str = "dayplanner-backend/1.0"
    geocoding_timeout: float = 15.0
    reverse_geocode_attempts: int = 2
    reverse_geocode_delays: Tuple[float, ...] = (1.1, 2.0)

    # IP-based geolocation
    ip_geolocation_url: str = "https://ipapi.co/json/"
    ip_geolocation_timeout: float = 5.0

    # Rate-limited request queue
    queue_min_delay: float = 1.2
    queue_settle_delay: float = 0.3
    queue_item_timeout: float = 60.0

    # Static fallback location
    default_city: str = "London"
    default_country: str = "United Kingdom"
    default_latitude: float = 51.5074
    default_longitude: float = -0.1278

    # Social activity / local events enrichment
    social_venue_limit: int = 3
    social_venue_queries: List[str] = ["cafe", "community centre", "park"]
    event_venue_queries: List[str] = ["theatre", "cinema"]

    # FastAPI Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_reload: bool = True

    # CORS Configuration
    frontend_url: str = "http://localhost:3000"

    # Environment
    environment: str = "development"
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
