"""
Configuration for the batch distributor.

Constants live at module level; a DistributorConfig groups the values a
deployment can change. DistributorSettings reads them from
BATCH_DISTRIBUTOR_* environment variables.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from eth_utils import is_address
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# EIP-712 signing domain. Must match the deployed contract exactly.
DOMAIN_NAME = "BatchDistributorV2"
DOMAIN_VERSION = "1"

# BSC mainnet, the chain the original deployment targets.
DEFAULT_CHAIN_ID = 56

# Maximum recipients per batch.
DEFAULT_MAX_BATCH_SIZE = 500

# Sentinel asset address meaning "native coin".
NATIVE_ASSET = "0x0000000000000000000000000000000000000000"
ZERO_ADDRESS = NATIVE_ASSET

UINT256_MAX = 2**256 - 1

# Seconds a freshly built batch stays valid by default.
DEFAULT_DEADLINE_SECONDS = 3600

ENV_PREFIX = "BATCH_DISTRIBUTOR_"


@dataclass(frozen=True)
class DistributorConfig:
    """Deployment settings for a distributor instance."""

    chain_id: int = DEFAULT_CHAIN_ID
    verifying_contract: str = ZERO_ADDRESS
    max_batch_size: int = DEFAULT_MAX_BATCH_SIZE
    # The deadline is signed but the deployed contract never checks it.
    # Off by default to match; turn on to reject stale batches.
    enforce_deadline: bool = False

    def __post_init__(self):
        if self.max_batch_size < 1:
            raise ValueError(
                f"max_batch_size must be at least 1, got {self.max_batch_size}"
            )
        if self.chain_id < 1:
            raise ValueError(f"chain_id must be positive, got {self.chain_id}")

    def with_overrides(self, **changes) -> "DistributorConfig":
        """Return a copy with the non-None values in `changes` applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    @classmethod
    def from_env(cls) -> "DistributorConfig":
        """Build a config from the BATCH_DISTRIBUTOR_* environment."""
        return DistributorSettings().to_config()


class DistributorSettings(BaseSettings):
    """
    Environment-driven settings.

    Recognised variables (all optional, empty counts as unset):
        BATCH_DISTRIBUTOR_CHAIN_ID
        BATCH_DISTRIBUTOR_VERIFYING_CONTRACT
        BATCH_DISTRIBUTOR_MAX_BATCH_SIZE
        BATCH_DISTRIBUTOR_ENFORCE_DEADLINE

    A malformed value raises pydantic's ValidationError (a ValueError).
    """

    chain_id: int = Field(
        default=DEFAULT_CHAIN_ID,
        ge=1,
        description="EIP-712 chainId of the signing domain.",
    )
    verifying_contract: str = Field(
        default=ZERO_ADDRESS,
        description="Distributor contract address (verifyingContract).",
    )
    max_batch_size: int = Field(
        default=DEFAULT_MAX_BATCH_SIZE,
        ge=1,
        description="Maximum recipients per batch.",
    )
    enforce_deadline: bool = Field(
        default=False,
        description="Reject batches whose signed deadline has passed.",
    )

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, env_ignore_empty=True)

    @field_validator("verifying_contract", mode="before")
    @classmethod
    def _parse_contract(cls, v):
        if isinstance(v, str):
            v = v.strip()
            if not is_address(v):
                raise ValueError(f"not an address: {v!r}")
        return v

    def to_config(self) -> DistributorConfig:
        return DistributorConfig(
            chain_id=self.chain_id,
            verifying_contract=self.verifying_contract,
            max_batch_size=self.max_batch_size,
            enforce_deadline=self.enforce_deadline,
        )
