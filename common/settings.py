import os
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    service_name: str = os.getenv("SERVICE_NAME", "Invoicingu Payment Backend")
    port: int = int(os.getenv("PORT", "3001"))

    # Receiving wallet and price
    receiver_address: str = os.getenv("RECEIVER_ADDRESS", "0QBFO8ldT9Ia1mboCBlcA5zgR-Op3D4NTO5r8s0yB6jQ92uX")
    expected_amount: float = float(os.getenv("EXPECTED_AMOUNT", "0.01"))
    amount_tolerance: float = float(os.getenv("AMOUNT_TOLERANCE", "0.001"))
    ledger_decimals: int = int(os.getenv("LEDGER_DECIMALS", "9"))

    # Monitoring windows (seconds)
    poll_interval_seconds: float = float(os.getenv("POLL_INTERVAL_SECONDS", "5"))
    monitor_timeout_seconds: float = float(os.getenv("MONITOR_TIMEOUT_SECONDS", "600"))
    retention_seconds: float = float(os.getenv("RETENTION_SECONDS", "3600"))
    cleanup_interval_seconds: float = float(os.getenv("CLEANUP_INTERVAL_SECONDS", "3600"))
    transfers_limit: int = int(os.getenv("TRANSFERS_LIMIT", "20"))

    toncenter_endpoint: str = os.getenv("TONCENTER_ENDPOINT", "https://toncenter.com/api/v2")
    toncenter_api_key: str = os.getenv("TONCENTER_API_KEY", "")
    ledger_request_timeout: float = float(os.getenv("LEDGER_REQUEST_TIMEOUT", "10"))

    kafka_bootstrap: str = os.getenv("KAFKA_BOOTSTRAP", "kafka:9092")
    kafka_events_enabled: bool = os.getenv("KAFKA_EVENTS_ENABLED", "false").lower() in ("1", "true", "yes")

settings = Settings()
