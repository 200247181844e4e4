"""
The distributor's public surface: who may call what, and when.

Roles and the pause switch are checked here, before the engine runs; the
engine itself only sees the caller's address.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Optional

from eth_utils import to_checksum_address

from batch_distributor.assets import AssetBackend
from batch_distributor.batch import Batch, BatchIdLike, ExecutionRecord
from batch_distributor.config import DistributorConfig
from batch_distributor.engine import EventListener, ExecutionEngine
from batch_distributor.errors import DistributorPaused, MissingRole
from batch_distributor.ledger import BatchLedger
from batch_distributor.signatures import SignatureLike


logger = logging.getLogger(__name__)


class Role(Enum):
    """Capabilities a caller can hold."""

    ADMIN = "admin"  # pause, allow-list, limits, native batches
    VERIFIER = "verifier"  # co-signs and executes token batches


class BatchDistributor:
    """
    Role-gated wrapper around an ExecutionEngine.

    The admin passed to the constructor holds both roles initially.
    """

    def __init__(self, engine: ExecutionEngine, admin: str):
        self.engine = engine
        self._roles: dict[Role, set[str]] = {role: set() for role in Role}
        self._roles_lock = threading.Lock()
        self.paused = False
        admin = to_checksum_address(admin)
        self._roles[Role.ADMIN].add(admin)
        self._roles[Role.VERIFIER].add(admin)

    @classmethod
    def create(
        cls,
        admin: str,
        assets: AssetBackend,
        config: Optional[DistributorConfig] = None,
        ledger: Optional[BatchLedger] = None,
        allowed_assets: Optional[set[str]] = None,
    ) -> "BatchDistributor":
        engine = ExecutionEngine(
            config or DistributorConfig(),
            assets,
            ledger=ledger,
            allowed_assets=allowed_assets,
        )
        return cls(engine, admin)

    @property
    def address(self) -> str:
        return self.engine.address

    # Access control

    def has_role(self, role: Role, account: str) -> bool:
        with self._roles_lock:
            return to_checksum_address(account) in self._roles[role]

    def _require(self, role: Role, caller: str) -> None:
        if not self.has_role(role, caller):
            raise MissingRole(f"{caller} lacks the {role.value} role")

    def _require_not_paused(self) -> None:
        if self.paused:
            raise DistributorPaused("distributor is paused")

    def grant_role(self, caller: str, role: Role, account: str) -> None:
        self._require(Role.ADMIN, caller)
        with self._roles_lock:
            self._roles[role].add(to_checksum_address(account))
        logger.info("granted %s to %s", role.value, account)

    def revoke_role(self, caller: str, role: Role, account: str) -> None:
        self._require(Role.ADMIN, caller)
        with self._roles_lock:
            self._roles[role].discard(to_checksum_address(account))
        logger.info("revoked %s from %s", role.value, account)

    # Administration

    def pause(self, caller: str) -> None:
        self._require(Role.ADMIN, caller)
        self.paused = True
        logger.info("distributor paused by %s", caller)

    def unpause(self, caller: str) -> None:
        self._require(Role.ADMIN, caller)
        self.paused = False
        logger.info("distributor unpaused by %s", caller)

    def set_asset_whitelisted(self, caller: str, asset: str, allowed: bool) -> None:
        self._require(Role.ADMIN, caller)
        self.engine.set_asset_allowed(asset, allowed)

    def set_max_batch_size(self, caller: str, size: int) -> None:
        self._require(Role.ADMIN, caller)
        self.engine.set_max_batch_size(size)

    def subscribe(self, listener: EventListener) -> None:
        self.engine.subscribe(listener)

    # Execution

    def execute_dual_sig(
        self,
        caller: str,
        batch: Batch,
        submitter: str,
        submitter_sig: SignatureLike,
        now: Optional[float] = None,
    ) -> ExecutionRecord:
        self._require(Role.VERIFIER, caller)
        self._require_not_paused()
        return self.engine.execute_dual_sig(caller, batch, submitter, submitter_sig, now)

    def execute_native(
        self,
        caller: str,
        batch_id: BatchIdLike,
        recipients: list[str],
        amounts: list[int],
        value: int,
        now: Optional[float] = None,
    ) -> ExecutionRecord:
        self._require(Role.ADMIN, caller)
        self._require_not_paused()
        return self.engine.execute_native(caller, batch_id, recipients, amounts, value, now)

    # Read-only helpers

    def compute_digest(self, batch: Batch) -> bytes:
        return self.engine.compute_digest(batch)

    def recover_signer(self, batch: Batch, signature: SignatureLike) -> str:
        return self.engine.recover_signer(batch, signature)

    def is_executed(self, batch_id: BatchIdLike) -> bool:
        return self.engine.is_executed(batch_id)
