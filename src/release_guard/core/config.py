from typing import Dict, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    PROJECT_NAME: str = "release-guard"
    VERSION: str = "0.1.0"
    API_V1_STR: str = "/api/v1"

    # Environment
    ENV: str = "dev"  # dev, staging, production
    DEBUG: bool = False
    SHUTDOWN_GRACE_SECONDS: float = 5.0
    # JSON lines file receiving rollback audit records; disabled when unset
    AUDIT_LOG_PATH: Optional[str] = None

    # Ledger persistence
    STORE_BACKEND: str = "memory"  # memory or file
    STORE_PATH: str = "data/ledger.json"

    # Metrics collaborator
    PROMETHEUS_URL: str = "http://prometheus:9090"
    PROMETHEUS_TIMEOUT: int = 30
    PROMETHEUS_STEP_SECONDS: int = 15
    COMPARISON_WINDOW_MINUTES: int = 30
    METRICS_BREAKER_FAIL_MAX: int = 5
    METRICS_BREAKER_RESET_SECONDS: float = 60.0

    # Rollback execution
    PLATFORM: str = "simulated"  # simulated or command
    STAGE_TIMEOUT_SECONDS: float = 300.0
    SIMULATION_DELAY_SCALE: float = 1.0
    ROLLING_INSTANCE_COUNT: int = 5
    AUTO_ROLLBACK_ENABLED: bool = False
    ROLLBACK_RATE_LIMIT: str = "10/minute"
    # JSON object of stage name -> command template, used when PLATFORM=command
    PLATFORM_STAGE_COMMANDS: Dict[str, str] = {}
    PLATFORM_HEALTH_COMMAND: Optional[str] = None

    # Advisory health checks
    CANARY_MIN_SAMPLES: int = 30
    CANARY_PROMOTION_CONFIDENCE: float = 0.9
    BLUE_GREEN_HEALTHY_RATIO: float = 0.9

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True
    )

settings = Settings()
