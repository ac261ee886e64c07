from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "data/nearhand.db"
    host: str = "0.0.0.0"
    port: int = 8000
    geocoder_url: str = "https://nominatim.openstreetmap.org/reverse"
    geocoder_user_agent: str = "nearhand/0.1 (+https://nearhand.app)"
    geocoder_language: str = "fr"
    geocoder_timeout_seconds: float = 5.0
    geolocation_timeout_seconds: float = 10.0
    stale_threshold_km: float = 5.0
    default_radius_km: float = 10.0
    max_radius_km: float = 200.0
    nearby_page_limit: int = 50
    default_country: str = "France"
    default_currency: str = "EUR"
    expire_poll_seconds: int = 60
    rate_limit_enabled: bool = True
    rate_limit_register: str = "5/hour"
    rate_limit_create: str = "30/minute"
    rate_limit_apply: str = "60/minute"
    rate_limit_transition: str = "60/minute"
    rate_limit_read: str = "120/minute"

    model_config = {"env_prefix": "NEARHAND_"}


settings = Settings()
