"""
Configuration management for the bridge relayer.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional

import structlog
from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .backoff import BackoffPolicy, build_backoff
from .errors import ConfigError

logger = structlog.get_logger()

SEPOLIA_CHAIN_ID = 11155111
SHASTA_CHAIN_ID = 2494

ChainKind = Literal["evm", "tron"]


class Settings(BaseSettings):
    """Environment-based settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Chain A (Ethereum Sepolia by default)
    chain_a_name: str = "chain-a"
    chain_a_kind: ChainKind = "evm"
    chain_a_rpc_url: str = ""
    chain_a_api_key: str = ""
    chain_a_chain_id: int = SEPOLIA_CHAIN_ID
    chain_a_bridge_address: str = ""
    chain_a_private_key: str = ""
    chain_a_gas_limit: Optional[int] = 500_000
    chain_a_max_fee: Optional[int] = None  # wei, caps the gas price (evm)
    chain_a_fee_limit: Optional[int] = None  # sun, caps the total fee (tron)
    chain_a_confirmations: int = 3
    chain_a_poll_interval_seconds: float = 12.0

    # Chain B (Tron Shasta by default)
    chain_b_name: str = "chain-b"
    chain_b_kind: ChainKind = "tron"
    chain_b_rpc_url: str = ""  # e.g. https://api.shasta.trongrid.io
    chain_b_api_key: str = ""
    chain_b_chain_id: int = SHASTA_CHAIN_ID
    chain_b_bridge_address: str = ""
    chain_b_private_key: str = ""
    chain_b_gas_limit: Optional[int] = None
    chain_b_max_fee: Optional[int] = None
    chain_b_fee_limit: Optional[int] = 100_000_000
    chain_b_confirmations: int = 19
    chain_b_poll_interval_seconds: float = 3.0

    # Supervision
    restart_delay_seconds: float = 5.0
    restart_backoff: Literal["fixed", "exponential"] = "fixed"
    restart_max_delay_seconds: float = 300.0

    # Claim retries
    claim_max_attempts: int = 3
    claim_retry_delay_seconds: float = 2.0
    claim_retry_max_delay_seconds: float = 60.0
    receipt_timeout_seconds: float = 120.0

    # Ledger
    database_url: str = "sqlite://"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False
    status_log_interval_seconds: float = 60.0


@dataclass
class ChainConfig:
    """Connection and contract settings for one side of the relay pair."""

    name: str
    rpc_url: str
    chain_id: int
    bridge_address: str
    private_key: str
    kind: str = "evm"
    api_key: str = ""
    gas_limit: Optional[int] = None
    max_fee: Optional[int] = None
    fee_limit: Optional[int] = None
    confirmations: int = 1
    poll_interval_seconds: float = 12.0


def _chain_config(settings: Settings, prefix: str) -> ChainConfig:
    return ChainConfig(
        name=getattr(settings, f"{prefix}_name"),
        kind=getattr(settings, f"{prefix}_kind"),
        rpc_url=getattr(settings, f"{prefix}_rpc_url"),
        api_key=getattr(settings, f"{prefix}_api_key"),
        fee_limit=getattr(settings, f"{prefix}_fee_limit"),
        chain_id=getattr(settings, f"{prefix}_chain_id"),
        bridge_address=getattr(settings, f"{prefix}_bridge_address"),
        private_key=getattr(settings, f"{prefix}_private_key"),
        gas_limit=getattr(settings, f"{prefix}_gas_limit"),
        max_fee=getattr(settings, f"{prefix}_max_fee"),
        confirmations=getattr(settings, f"{prefix}_confirmations"),
        poll_interval_seconds=getattr(settings, f"{prefix}_poll_interval_seconds"),
    )


@dataclass
class RelayerConfig:
    """Full relayer configuration."""

    settings: Settings
    chain_a: ChainConfig
    chain_b: ChainConfig

    @classmethod
    def from_settings(cls, settings: Settings) -> "RelayerConfig":
        config = cls(
            settings=settings,
            chain_a=_chain_config(settings, "chain_a"),
            chain_b=_chain_config(settings, "chain_b"),
        )
        config.validate()
        return config

    @classmethod
    def from_env(cls, env_path: Optional[Path] = None) -> "RelayerConfig":
        """
        Load configuration from environment.

        Raises:
            ConfigError: If settings are missing or inconsistent
        """
        try:
            settings = Settings(_env_file=env_path) if env_path else Settings()
        except ValidationError as e:
            raise ConfigError(f"Invalid settings: {e}") from e
        return cls.from_settings(settings)

    def validate(self) -> None:
        """Check the pair is usable before anything connects."""
        s = self.settings
        errors: list[str] = []

        for chain, prefix in ((self.chain_a, "CHAIN_A"), (self.chain_b, "CHAIN_B")):
            if not chain.rpc_url:
                errors.append(f"{prefix}_RPC_URL is required")
            if not chain.bridge_address:
                errors.append(f"{prefix}_BRIDGE_ADDRESS is required")
            if not chain.private_key:
                errors.append(f"{prefix}_PRIVATE_KEY is required")
            if chain.confirmations < 1:
                errors.append(f"{prefix}_CONFIRMATIONS must be at least 1")
            if chain.poll_interval_seconds <= 0:
                errors.append(f"{prefix}_POLL_INTERVAL_SECONDS must be positive")

        if self.chain_a.chain_id == self.chain_b.chain_id:
            errors.append(
                f"chain ids must differ, both are {self.chain_a.chain_id}"
            )
        if s.restart_delay_seconds <= 0:
            errors.append("RESTART_DELAY_SECONDS must be positive")
        if s.claim_max_attempts < 1:
            errors.append("CLAIM_MAX_ATTEMPTS must be at least 1")
        if s.claim_retry_delay_seconds < 0:
            errors.append("CLAIM_RETRY_DELAY_SECONDS must not be negative")

        if errors:
            raise ConfigError("; ".join(errors))

    def restart_policy(self) -> BackoffPolicy:
        """Delay policy between listener sessions and startup attempts."""
        s = self.settings
        return build_backoff(
            s.restart_backoff, s.restart_delay_seconds, s.restart_max_delay_seconds
        )

    def claim_retry_policy(self) -> BackoffPolicy:
        """Delay policy between attempts of a retryable claim."""
        s = self.settings
        return build_backoff(
            "exponential", s.claim_retry_delay_seconds, s.claim_retry_max_delay_seconds
        )

    def log_summary(self) -> None:
        """Log configuration settings (hiding secrets)."""
        for chain in (self.chain_a, self.chain_b):
            logger.info(
                "chain_configured",
                chain=chain.name,
                kind=chain.kind,
                chain_id=chain.chain_id,
                rpc_url=chain.rpc_url,
                bridge=chain.bridge_address,
                private_key="[SET]" if chain.private_key else "[NOT SET]",
                gas_limit=chain.gas_limit,
                max_fee=chain.max_fee,
                fee_limit=chain.fee_limit,
                api_key="[SET]" if chain.api_key else "[NOT SET]",
                confirmations=chain.confirmations,
            )
        s = self.settings
        logger.info(
            "relayer_configured",
            restart_delay=s.restart_delay_seconds,
            restart_backoff=s.restart_backoff,
            claim_max_attempts=s.claim_max_attempts,
            claim_retry_delay=s.claim_retry_delay_seconds,
        )
