from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        validate_assignment=True,
    )

    app_env: str = "dev"
    database_url: str

    # Intent classifier / response generator backend: "openai" or "heuristic"
    ai_provider: str = "openai"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"

    admin_api_key: str | None = (
        None  # Optional - if not set, admin endpoints are unprotected (dev mode)
    )

    # Outbound message bounds
    sms_max_length: int = 160  # Target length given to the response generator
    generated_reply_max_chars: int = 300  # Hard cap on generated text

    # Conversation context windows
    history_window: int = 20  # Messages loaded as classifier/generator history
    summary_max_messages: int = 50  # Messages included in handoff summaries
    summary_max_chars: int = 1200

    # Copy (YAML) locale for template replies
    copy_locale: str = "en_US"

    # Persona prompt used by the LLM response generator
    agent_persona_prompt: str = (
        "You are a friendly scheduling coordinator for a home services company."
    )

    # CRM HTTP timeouts (seconds)
    crm_timeout_seconds: float = 10.0
    crm_connect_timeout_seconds: float = 5.0


# Settings will load from environment variables or .env file
# Required fields will raise ValidationError if missing (fail-fast)
settings = Settings()
