"""
Application settings loaded from environment variables.

Uses pydantic-settings for validation and type safety.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings.

    All values loaded from .env file or environment variables.
    Validation happens automatically on startup.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),  # Check current dir, then parent
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ===================
    # SUPABASE
    # ===================
    supabase_url: str = Field(
        ...,
        description="Supabase project URL"
    )
    supabase_key: str = Field(
        ...,
        description="Supabase anon/public key"
    )
    supabase_service_key: Optional[str] = Field(
        None,
        description="Supabase service role key (for admin operations)"
    )

    # ===================
    # DATACRAZY CRM
    # ===================
    datacrazy_api_url: str = Field(
        default="https://api.g1.datacrazy.io/api/v1",
        description="Datacrazy REST API base URL"
    )
    datacrazy_api_token: Optional[str] = Field(
        None,
        description="Datacrazy bearer token"
    )
    datacrazy_timeout_seconds: int = Field(
        default=30,
        ge=1,
        le=300,
        description="HTTP timeout for CRM calls"
    )
    crm_rate_limit_calls: int = Field(
        default=55,
        ge=1,
        le=60,
        description="Max CRM calls per rolling window (API budget is 60/min)"
    )
    crm_rate_limit_window_seconds: float = Field(
        default=60.0,
        ge=1,
        description="Rolling window length for the CRM rate limiter"
    )
    crm_rate_limit_buffer_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Extra wait after the window resets"
    )
    crm_lead_source: str = Field(
        default="CSV Platform",
        description="Source label stamped on leads created by imports"
    )

    # ===================
    # IMPORT PIPELINE
    # ===================
    import_progress_every: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Persist progress at least every N records"
    )
    import_cancel_check_every: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Check the job document for cancellation every K records"
    )
    import_record_delay_seconds: float = Field(
        default=0.1,
        ge=0,
        le=10,
        description="Pause between records in the background loop"
    )
    import_error_log_size: int = Field(
        default=50,
        ge=1,
        le=500,
        description="How many recent per-record errors a job keeps"
    )
    import_chunk_size: int = Field(
        default=500,
        ge=10,
        le=50000,
        description="Rows per chunk when streaming CSV files"
    )
    import_seconds_per_row: float = Field(
        default=1.5,
        ge=0.1,
        le=60,
        description="Average processing time per row, used for estimates"
    )
    import_upload_dir: Optional[str] = Field(
        None,
        description="Directory for spooled uploads (system temp dir if unset)"
    )

    # ===================
    # QUEUE (ARQ / REDIS)
    # ===================
    redis_url: Optional[str] = Field(
        None,
        description="Redis DSN for the arq work queue"
    )
    queue_max_tries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per queued row before giving up"
    )
    queue_backoff_seconds: float = Field(
        default=1.0,
        ge=0,
        le=60,
        description="Base delay for exponential retry backoff"
    )
    queue_max_jobs: int = Field(
        default=2,
        ge=1,
        le=50,
        description="Concurrent row tasks per worker"
    )

    # ===================
    # VIPP / CORREIOS
    # ===================
    vipp_post_url: str = Field(
        default="http://vpsrv.visualset.com.br/api/v1/middleware/PostarObjeto",
        description="ViPP PostarObjeto endpoint"
    )
    vipp_print_url: str = Field(
        default="https://vipp.visualset.com.br/vipp/remoto",
        description="ViPP remote printing base URL"
    )
    vipp_user: Optional[str] = Field(None, description="ViPP user")
    vipp_password: Optional[str] = Field(None, description="ViPP password/token")
    vipp_profile_id: Optional[str] = Field(None, description="ViPP profile id")
    vipp_contract_number: Optional[str] = Field(None, description="ECT contract number")
    vipp_admin_code: Optional[str] = Field(None, description="ECT administrative code")
    vipp_card_number: Optional[str] = Field(None, description="ECT posting card")
    vipp_default_service: str = Field(
        default="201501",
        description="Default ECT service code (Impresso Normal Módico)"
    )
    vipp_environment: str = Field(
        default="test",
        pattern="^(test|production)$",
        description="Whether ViPP credentials point at production"
    )
    label_request_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        le=30,
        description="Pause between label requests"
    )

    # ===================
    # NOTIFICATIONS
    # ===================
    n8n_webhook_url: Optional[str] = Field(
        None,
        description="N8N webhook receiving label payloads"
    )
    admin_phone: Optional[str] = Field(
        None,
        description="Admin WhatsApp number for label summaries"
    )
    client_phone_override: Optional[str] = Field(
        None,
        description="Test phone that replaces every client phone"
    )
    notify_clients: bool = Field(
        default=False,
        description="Send client notifications for new labels"
    )
    evolution_api_url: Optional[str] = Field(None, description="Evolution API base URL")
    evolution_api_key: Optional[str] = Field(None, description="Evolution API key")
    evolution_instance: Optional[str] = Field(None, description="Evolution instance name")
    whatsapp_message_delay_seconds: float = Field(
        default=5.0,
        ge=0,
        le=60,
        description="Pause between WhatsApp messages"
    )
    tracking_url: str = Field(
        default="https://rastreamento.correios.com.br",
        description="Public tracking page"
    )
    notification_language: str = Field(
        default="pt",
        pattern="^(pt|en)$",
        description="Language of WhatsApp/webhook message templates"
    )

    # ===================
    # GOOGLE SHEETS
    # ===================
    google_sheets_spreadsheet_id: Optional[str] = Field(
        None,
        description="Spreadsheet receiving the label log"
    )
    google_sheets_sheet_name: str = Field(
        default="Etiquetas",
        description="Sheet (tab) name for the label log"
    )
    google_service_account_file: Optional[str] = Field(
        None,
        description="Path to the service account JSON key"
    )

    # ===================
    # CONFIRMATION GATES
    # ===================
    confirm_production_phrase: str = Field(
        default="GERAR ETIQUETAS",
        description="Phrase required to generate labels with production credentials"
    )
    confirm_clients_phrase: str = Field(
        default="ENVIAR PARA CLIENTES",
        description="Phrase required to notify real clients"
    )

    # ===================
    # APP SETTINGS
    # ===================
    environment: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="Application environment"
    )
    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API host"
    )
    api_port: int = Field(
        default=8000,
        ge=1000,
        le=65535,
        description="API port"
    )

    # ===================
    # COMPUTED PROPERTIES
    # ===================
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def crm_configured(self) -> bool:
        return bool(self.datacrazy_api_token)

    @property
    def vipp_is_production(self) -> bool:
        return self.vipp_environment == "production"

    @property
    def evolution_configured(self) -> bool:
        """Check if the Evolution WhatsApp API is properly configured."""
        return bool(self.evolution_api_url and self.evolution_api_key and self.evolution_instance)

    @property
    def sheets_configured(self) -> bool:
        return bool(self.google_sheets_spreadsheet_id)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload.

    Returns:
        Settings: Application settings

    Raises:
        ValidationError: If required env vars are missing or invalid
    """
    return Settings()


# For convenient imports: from config.settings import settings
settings = get_settings()
