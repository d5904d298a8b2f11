from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, PostgresDsn, field_validator
from typing import Optional, Any


class Settings(BaseSettings):
    # --- Project Settings ---
    PROJECT_NAME: str = "mailmaint"
    API_V1_STR: str = "/api/v1"
    API_PORT: str = "8000"
    BASE_DIR: Path = Path(__file__).resolve().parent.parent
    LOG_LEVEL: str = "INFO"

    # --- Security Settings ---
    #empty => operator API refuses every request
    SECRET_KEY: str = ""
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 8
    MAINTENANCE_RATE_LIMIT: str = "10/minute"

    # --- Database Settings ---
    POSTGRES_USER: str = ""
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = ""
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: str = "5432"
    DATABASE_URL: Optional[str] = Field(default=None, validate_default=True)

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str], info) -> Any:
        if isinstance(v, str):
            return v

        if not info.data.get("POSTGRES_DB"):
            return "sqlite:///./mailmaint.db"

        return str(PostgresDsn.build(
            scheme="postgresql",
            username=info.data.get("POSTGRES_USER"),
            password=info.data.get("POSTGRES_PASSWORD"),
            host=info.data.get("POSTGRES_HOST"),
            port=int(info.data.get("POSTGRES_PORT", 5432)),
            path=info.data.get("POSTGRES_DB") or "",
        ))

    RUN_RETENTION_DAYS: int = 90

    # --- Exchange Management Shell Settings ---
    POWERSHELL_EXECUTABLE: str = "powershell.exe"
    EXCHANGE_SNAPIN: str = "Microsoft.Exchange.Management.PowerShell.SnapIn"
    #remote session endpoint, e.g. http://mbx01.contoso.local/PowerShell/
    EXCHANGE_CONNECTION_URI: str = ""
    SHELL_TIMEOUT_SECONDS: int = 600
    #absolute path; empty => Scripts\RebalanceActiveDatabaseCopies.ps1 under $env:ExchangeInstallPath
    REBALANCE_SCRIPT: str = ""

    # --- Maintenance Settings ---
    COMPONENT_REQUESTER: str = "Maintenance"
    POLL_INTERVAL_SECONDS: float = 10.0
    #None => poll until no database copy is mounted
    MAX_POLL_ATTEMPTS: Optional[int] = None

    @field_validator("MAX_POLL_ATTEMPTS", mode="before")
    @classmethod
    def empty_attempts_means_unbounded(cls, v: Any) -> Any:
        if v in ("", 0, "0"):
            return None
        return v

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra="ignore")


settings = Settings()
