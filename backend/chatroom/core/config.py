from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "chatroom"
    app_env: str = "development"
    log_level: str = "INFO"

    database_url: str = "sqlite:///./chatroom.db"

    # Key derivation (must match every client in the room)
    kdf_iterations: int = 100_000

    # Display names
    username_min_length: int = 2
    username_max_length: int = 20
    reserved_names: List[str] = ["suhu", "shuvangi", "suhu ai"]
    passphrase_min_length: int = 4

    # Presence
    heartbeat_interval_seconds: float = 30.0
    presence_stale_after_seconds: Optional[float] = None

    # Messages
    message_max_length: int = 4000

    # Assistant
    assistant_mention: str = "@suhu"
    assistant_name: str = "Suhu AI"
    assistant_placeholder: str = "Thinking..."
    assistant_history_limit: int = 0
    assistant_system_prompt: Optional[str] = None

    OPENAI_API_KEY: Optional[str] = None
    OPENAI_BASE_URL: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_TIMEOUT_SECONDS: float = 60.0

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
