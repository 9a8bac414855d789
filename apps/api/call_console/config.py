from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    environment: str = "development"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8080
    cors_origins: list[str] = ["http://localhost:1420", "http://localhost:5173"]
    interaction_log_path: str = "logs/interactions.jsonl"
    # JSON conversation script; the built-in fire emergency script is used when unset
    script_path: str | None = None
    time_scale: float = 1.0
    connect_delay_seconds: float = 1.0
    idle_delay_seconds: float = 2.0
    audio_interval_seconds: float = 0.5
    reconnect_interval_seconds: float = 3.0
    client_url: str = "ws://localhost:8080/tnt"

    class Config:
        env_file = ".env"
        env_prefix = "CONSOLE_"


settings = Settings()
