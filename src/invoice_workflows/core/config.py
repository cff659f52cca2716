
from pydantic import Field
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    app_name: str = Field("invoice-workflows", alias="APP_NAME")
    app_env: str = Field("dev", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # Storage backend: "memory" or "sqlite"
    storage_backend: str = Field("memory", alias="STORAGE_BACKEND")
    approval_db_path: str = Field("approvals.db", alias="APPROVAL_DB_PATH")

    # Approval engine defaults
    approval_auto_approve_threshold: float = Field(25.0, alias="APPROVAL_AUTO_APPROVE_THRESHOLD")
    approval_high_risk_threshold: float = Field(70.0, alias="APPROVAL_HIGH_RISK_THRESHOLD")
    approval_high_value_threshold: float = Field(10000.0, alias="APPROVAL_HIGH_VALUE_THRESHOLD")
    approval_default_escalation_roles: str = Field("finance_director", alias="APPROVAL_DEFAULT_ESCALATION_ROLES")  # Comma-separated list

    # Teams
    teams_webhook_url: str | None = Field(default=None, alias="TEAMS_WEBHOOK_URL")

    # API Base URL (for links in Teams cards and the timeout sweeper)
    api_base_url: str = Field("http://127.0.0.1:8000", alias="API_BASE_URL")

    # CORS allowed origins (comma-separated list for production deployment)
    cors_origins: str = Field("http://localhost:3000,http://127.0.0.1:3000", alias="CORS_ORIGINS")

    # Azure Service Bus (notifications)
    service_bus_connection_string: str | None = Field(default=None, alias="SERVICE_BUS_CONNECTION_STRING")
    service_bus_entity: str = Field("invoice-approval-events", alias="SERVICE_BUS_ENTITY")

    # Collections automation
    collections_legal_threshold: float = Field(500.0, alias="COLLECTIONS_LEGAL_THRESHOLD")
    collections_min_recovery_rate: float = Field(0.3, alias="COLLECTIONS_MIN_RECOVERY_RATE")
    collections_min_response_rate: float = Field(0.2, alias="COLLECTIONS_MIN_RESPONSE_RATE")
    collections_business_start_hour: int = Field(9, alias="COLLECTIONS_BUSINESS_START_HOUR")
    collections_business_end_hour: int = Field(17, alias="COLLECTIONS_BUSINESS_END_HOUR")
    collections_payment_link_base: str = Field("https://billing.example.com/pay", alias="COLLECTIONS_PAYMENT_LINK_BASE")

    # Timeout sweeper
    sweeper_interval_seconds: int = Field(300, alias="SWEEPER_INTERVAL_SECONDS")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "populate_by_name": True}

    @property
    def default_escalation_roles(self) -> list[str]:
        return [r.strip() for r in self.approval_default_escalation_roles.split(",") if r.strip()]

settings = Settings()
