from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "securechat"
    app_env: str = "development"
    log_level: str = "INFO"

    # Store: "memory" or "sql"
    store_backend: str = "memory"
    database_url: str = "sqlite:////data/securechat.sqlite"
    store_timeout_seconds: float = 8.0

    # Message envelope. Protects content at rest against the storage
    # provider only; anyone holding MESSAGE_SECRET can read every room.
    MESSAGE_SECRET: str = "change-me"
    KDF_SALT: str = "securechat-envelope-v1"
    KDF_ITERATIONS: int = 100_000

    # Administrative identity, checked literally and never persisted
    ADMIN_USERNAME: str = "admin"
    ADMIN_PASSWORD: str = "change-me"

    # JWT for the admin console
    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRE_MINUTES: int = 60

    identity_domain: str = "securechat.local"

    read_batch_cap: int = 400
    message_window: int = 200
    audit_window: int = 100

    command_prefix: str = "/"
    assistant_marker: str = "@ai"

    # Generation collaborator (Generative Language REST API)
    GENERATION_API_KEY: str = ""
    generation_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    chat_model: str = "gemini-3-flash-preview"
    vision_model: str = "gemini-2.5-flash-image"
    generation_timeout_seconds: float = 60.0

    model_config = SettingsConfigDict(
        env_prefix="SECURECHAT_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
