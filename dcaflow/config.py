import re

from pathlib import Path
from typing import List, Optional

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_PRIVATE_KEY_RE = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


class ConfigurationError(Exception):
    """Required executor configuration is missing or malformed."""

    def __init__(self, problems: List[str]):
        self.problems = problems
        super().__init__("Invalid executor configuration: " + "; ".join(problems))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Chain
    rpc_url: str = Field(default="", description="EVM JSON-RPC endpoint")
    chain_id: int = Field(default=8453, description="Chain ID the executor operates on (Base)")
    signer_private_key: SecretStr = Field(
        default=SecretStr(""),
        description="Private key of the executor signer",
        validation_alias=AliasChoices("signer_private_key", "private_key"),
    )
    forwarding_contract_address: str = Field(
        default="",
        description="DCA forwarding contract that executes swaps for users",
        validation_alias=AliasChoices("forwarding_contract_address", "dca_executor_address"),
    )
    usdc_address: str = Field(
        default="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        description="USDC contract (source token of every plan)",
    )

    # 1inch swap API
    oneinch_api_key: SecretStr = Field(default=SecretStr(""), description="1inch developer portal API key")
    oneinch_base_url: str = Field(default="https://api.1inch.dev/swap/v6.0", description="1inch swap API base URL")
    oneinch_referrer: str = Field(
        default="0xe42c136730a9cfefb5514d4d3d06eb27baaf3f08",
        description="Integrator address receiving the swap fee",
    )
    swap_slippage_percent: int = Field(default=5, ge=0, le=50, description="Slippage tolerance sent to 1inch")
    swap_fee_percent: int = Field(default=3, ge=0, le=3, description="Integrator fee sent to 1inch")

    # Operator endpoints (reconcile); disabled while empty
    operator_api_key: SecretStr = Field(default=SecretStr(""), description="X-Operator-Key for operator endpoints")

    # Persistence
    database_url: str = Field(
        default=f"sqlite:///{BASE_DIR / 'dcaflow.db'}",
        description="SQLAlchemy database URL",
    )

    # Timeouts
    request_timeout_seconds: float = Field(default=20, gt=0, description="Swap API request timeout")
    rpc_timeout_seconds: float = Field(default=30, gt=0, description="JSON-RPC request timeout")
    confirmation_timeout_seconds: float = Field(default=180, gt=0, description="Max wait for a swap receipt")
    confirmation_poll_interval_seconds: float = Field(default=2, gt=0, description="Receipt polling interval")
    db_timeout_seconds: float = Field(default=10, gt=0, description="Database connection/lock wait timeout")

    gas_limit_multiplier: float = Field(default=1.2, ge=1.0, description="Headroom applied to eth_estimateGas")

    @property
    def has_oneinch_key(self) -> bool:
        return bool(self.oneinch_api_key.get_secret_value())

    @property
    def has_signer_key(self) -> bool:
        return bool(self.signer_private_key.get_secret_value())

    def require_executor_config(self) -> None:
        """Fail fast unless everything plan execution needs is configured.

        Every problem is collected so operators see the full list at once.
        """
        problems: List[str] = []

        if not self.rpc_url:
            problems.append("RPC_URL is required")
        if not self.has_oneinch_key:
            problems.append("ONEINCH_API_KEY is required")
        if not self.database_url:
            problems.append("DATABASE_URL is required")

        key = self.signer_private_key.get_secret_value()
        if not key:
            problems.append("SIGNER_PRIVATE_KEY is required")
        elif not _PRIVATE_KEY_RE.match(key):
            problems.append("SIGNER_PRIVATE_KEY must be a 32-byte hex string")

        for name in ("forwarding_contract_address", "usdc_address"):
            value = getattr(self, name)
            if not value:
                problems.append(f"{name.upper()} is required")
            elif not _ADDRESS_RE.match(value):
                problems.append(f"{name.upper()} is not a valid address: {value}")

        if problems:
            raise ConfigurationError(problems)

    def oneinch_swap_url(self, chain_id: Optional[int] = None) -> str:
        return f"{self.oneinch_base_url.rstrip('/')}/{chain_id or self.chain_id}/swap"


# Global settings instance
settings = Settings()
