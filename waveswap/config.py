import os

from pathlib import Path
from typing import Any, List

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.resilience.strategies import CallPolicy


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Ensure we pick up legacy environment variable aliases."""

        super().model_post_init(__context)

        if not self.encifher_api_key:
            fallback = os.getenv("NEXT_PUBLIC_ENCIFHER_SDK_KEY") or os.getenv("ENCIFHER_API_KEY")
            if fallback:
                object.__setattr__(self, "encifher_api_key", fallback)

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    # Public ledger RPC
    solana_rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com",
        description="Solana JSON-RPC endpoint used for status probes and submissions",
    )
    solana_commitment: str = Field(default="confirmed", description="Commitment level for RPC reads")

    # Privacy pool API
    encifher_base_url: str = Field(
        default="https://authority.encrypt.trade/api/v1",
        description="Base URL of the Encifher privacy-pool API",
    )
    encifher_api_key: str = Field(
        default="",
        description="Encifher API key sent as bearer token and x-api-key header",
        validation_alias=AliasChoices("encifher_api_key", "ENCIFHER_API_KEY", "ENCIFHER_SDK_KEY"),
    )

    # HTTP
    request_timeout_seconds: float = Field(default=30.0, description="httpx client timeout")

    # Retry / circuit breaker
    transactional_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts for calls that submit or build transactions",
    )
    read_max_attempts: int = Field(
        default=5,
        ge=1,
        description="Attempts for idempotent reads such as status polling",
    )
    retry_base_delay_seconds: float = Field(default=1.0, ge=0, description="Backoff base delay")
    upstream_call_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Hard timeout applied to every individual upstream attempt",
    )
    circuit_failure_threshold: int = Field(
        default=5,
        ge=1,
        description="Exhausted call sequences before a breaker opens",
    )
    circuit_recovery_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Time an open breaker rejects calls before half-opening",
    )

    # Settlement polling
    poll_interval_seconds: float = Field(default=3.0, gt=0, description="Order status poll interval")
    poll_max_attempts: int = Field(default=40, ge=1, description="Order status polls before timing out")
    poll_grace_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Slack added to the poller's wall-clock bound",
    )

    # Chain confirmation
    chain_confirmation_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="How long to wait for a submitted deposit/withdrawal to confirm",
    )
    chain_confirmation_interval_seconds: float = Field(default=2.0, gt=0)

    # Recovery
    recovery_pending_window_seconds: float = Field(
        default=300.0,
        description="A signature unseen for less than this is still treated as pending",
    )
    recovery_expected_tokens: List[str] = Field(
        default_factory=lambda: [
            "4AGxpKxYnw7g1ofvYDs5Jq2a1ek5kB9jS2NTUaippump",  # WAVE
            "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",  # USDC
        ],
        description="Token mints checked for confidential balances during deposit recovery",
    )
    balance_sync_url: str = Field(
        default="",
        description="Endpoint notified (fire-and-forget) when recovery finds confidential funds",
    )
    support_contact: str = Field(default="support@waveswap.io", description="Shown in recovery guidance")

    @property
    def has_encifher_key(self) -> bool:
        return bool(self.encifher_api_key)

    def transactional_policy(self) -> CallPolicy:
        return CallPolicy(
            max_attempts=self.transactional_max_attempts,
            base_delay_seconds=self.retry_base_delay_seconds,
            timeout_seconds=self.upstream_call_timeout_seconds,
            failure_threshold=self.circuit_failure_threshold,
            recovery_timeout_seconds=self.circuit_recovery_timeout_seconds,
        )

    def read_policy(self) -> CallPolicy:
        return CallPolicy(
            max_attempts=self.read_max_attempts,
            base_delay_seconds=self.retry_base_delay_seconds,
            timeout_seconds=self.upstream_call_timeout_seconds,
            failure_threshold=self.circuit_failure_threshold,
            recovery_timeout_seconds=self.circuit_recovery_timeout_seconds,
        )


# Global settings instance
settings = Settings()
