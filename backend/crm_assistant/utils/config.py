from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash"
    model_temperature: float = 0.1
    port: int = 8000
    host: str = "0.0.0.0"
    environment: str = "development"
    frontend_url: str = "http://localhost:3000"
    default_timezone: str = "UTC"
    conversation_idle_seconds: int = 3600  # Conversations idle for an hour are forgotten
    search_cache_ttl_seconds: int = 30
    contact_search_limit: int = 10
    duplicate_candidate_limit: int = 10
    alert_search_limit: int = 20
    upcoming_window_days: int = 30
    past_event_grace_seconds: int = 60
    max_tool_rounds: int = 3  # Model follow-ups that may trigger further operations
    log_level: str = "INFO"
    log_format: str = "text"  # "text" or "json"

    class Config:
        env_file = ".env"
        case_sensitive = False

settings = Settings()
