"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Database
    DATABASE_URL: str = "sqlite:///./supportdesk.db"

    # Token Encryption (channel credentials, tracker tokens)
    FERNET_KEY: str = ""  # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"

    # Internal scheduled endpoints (cron jobs)
    INTERNAL_SECRET: str = ""  # Secret for /internal/scheduled/* endpoints

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Rate Limiting (requests per minute)
    RATE_LIMIT_WEBHOOK: int = 600
    RATE_LIMIT_WIDGET: int = 30
    RATE_LIMIT_API: int = 120

    # Webhooks
    WEBHOOK_MAX_PAYLOAD_BYTES: int = 1024 * 1024
    SLACK_SIGNING_SECRET: str = ""  # Fallback when a connection has no own secret
    SLACK_MAX_CLOCK_SKEW_SECONDS: int = 300
    TWILIO_AUTH_TOKEN: str = ""
    META_APP_SECRET: str = ""
    META_VERIFY_TOKEN: str = ""
    META_API_VERSION: str = "v21.0"
    X_CONSUMER_SECRET: str = ""
    DISCORD_PUBLIC_KEY: str = ""  # Hex Ed25519 key of the Discord application
    TELEGRAM_WEBHOOK_SECRET: str = ""
    TELEGRAM_BOT_TOKEN: str = ""  # Shared bot that chats link to with /connect CODE
    GMAIL_PUBSUB_VERIFICATION_TOKEN: str = ""
    TEAMS_WEBHOOK_SECRET: str = ""  # Base64 HMAC key of a Teams outgoing webhook
    PUBLIC_BASE_URL: str = ""  # Used to rebuild signed URLs behind proxies (Twilio)

    # Google OAuth client (Gmail token refresh only; acquisition is external)
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""

    # Microsoft OAuth client (Teams token refresh only)
    TEAMS_CLIENT_ID: str = ""
    TEAMS_CLIENT_SECRET: str = ""

    # AI providers
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.0-flash"
    AZURE_OPENAI_ENDPOINT: str = ""
    AZURE_OPENAI_API_KEY: str = ""
    AZURE_OPENAI_DEPLOYMENT: str = ""
    AZURE_OPENAI_API_VERSION: str = "2024-06-01"
    SELF_HOSTED_AI_URL: str = "http://localhost:11434"
    SELF_HOSTED_AI_MODEL: str = "llama3.1"
    AI_REQUEST_TIMEOUT_SECONDS: float = 60.0

    # Outbound email (Resend)
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "support@example.com"

    # Widget
    WIDGET_EMAIL_DOMAIN: str = "widget.local"

    # Shared cache
    REDIS_URL: str = ""
    REDIS_MAX_CONNECTIONS: int = 20
    REDIS_TIMEOUT_SECONDS: float = 2.0

    # Worker
    WORKER_POLL_INTERVAL: float = 2.0
    WORKER_POOL_SIZE: int = 2
    WORKER_WATCHDOG_INTERVAL: float = 30.0
    WORKER_SCHEDULER_INTERVAL: float = 60.0
    CHANNEL_SEND_TIMEOUT_SECONDS: float = 20.0

    # Queue policy overrides
    QUEUE_BASE_DELAY_SECONDS: float = 2.0
    QUEUE_TICKET_PROCESSING_ATTEMPTS: int = 3
    QUEUE_OUTBOUND_EMAIL_ATTEMPTS: int = 5
    QUEUE_RECURRING_ISSUE_ATTEMPTS: int = 3
    QUEUE_ANALYTICS_ATTEMPTS: int = 2


settings = Settings()
