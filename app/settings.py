from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    REDIS_URL: str = "redis://localhost:6379/0"

    GOOGLE_API_KEY: str | None = None
    GEMINI_MODEL: str = "gemini-2.5-flash"
    # "server" = call the configured LLM from the backend
    # anything else = never call the LLM, always use the deterministic fallbacks
    LLM_MODE: str = "server"

    TAVUS_API_KEY: str | None = None
    TAVUS_REPLICA_ID: str = "re8e740a42"
    TAVUS_BASE_URL: str = "https://tavusapi.com/v2"

    APP_URL: str = "http://localhost:3000"
    VERCEL_URL: str | None = None
    PORT: int = 3000

    DEFAULT_USER_ID: str = "demo"
    USER_COOKIE: str = "drako_user_id"
    USER_COOKIE_MAX_AGE: int = 60 * 60 * 24
    CONVERSATION_TTL_SECONDS: int = 2 * 60 * 60
    PERSONA_TTL_SECONDS: int = 7 * 24 * 60 * 60

    HEARTBEAT_SECONDS: float = 30.0
    # Serialize read-modify-write per (user, date); False keeps last-writer-wins
    SERIALIZE_WRITES: bool = True

    LOG_LEVEL: str = "INFO"

    def public_url(self) -> str:
        if self.VERCEL_URL:
            return f"https://{self.VERCEL_URL}"
        return self.APP_URL

    def llm_enabled(self) -> bool:
        return (self.LLM_MODE or "").lower() == "server" and bool(self.GOOGLE_API_KEY)

settings = Settings()  # loads from env/.env
