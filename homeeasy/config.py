from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "data/homeeasy.db"
    storage_backend: str = "sql"  # sql | memory
    memory_fallback: bool = True
    host: str = "0.0.0.0"
    port: int = 5000
    log_level: str = "INFO"
    jwt_secret: str = "homeeasy-development-secret-change-me-please"
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 60 * 24 * 7
    bcrypt_rounds: int = 12
    rate_limit_enabled: bool = True
    rate_limit_register: str = "5/hour"
    rate_limit_login: str = "20/minute"
    rate_limit_create: str = "30/minute"
    rate_limit_bid: str = "30/minute"
    rate_limit_message: str = "120/minute"
    rate_limit_read: str = "240/minute"
    live_queue_size: int = 256
    presence_retention_hours: int = 24
    presence_cleanup_interval_seconds: int = 600
    default_page_size: int = 20
    max_page_size: int = 100
    message_page_size: int = 50

    model_config = {"env_prefix": "HOMEEASY_"}


settings = Settings()
