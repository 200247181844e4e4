"""
Execution engine for dual-signature batches.

Token path (execute_dual_sig), checked in this order, first failure wins:

    1. asset is allow-listed              AssetNotWhitelisted
    2. batch id is non-zero               InvalidBatchId
    3. batch id not yet executed          BatchAlreadyExecuted
    4. at least one recipient             EmptyBatch
    5. as many amounts as recipients      InvalidArrayLengths
    6. no more than max_batch_size        BatchTooLarge
    7-8. digest rebuilt, signer recovered InvalidSignature
    9. recovered signer == submitter      InvalidSigner
    10. executor != submitter             SameSubmitterAndExecutorNotAllowed

Execution is staged: the batch id is marked first, then balances and
entries are checked and the transfers made inside AssetBackend.atomic().
If anything fails after the mark, the transfers are undone and the mark is
released, so a failed batch pays nobody and stays executable. Events are
published only after the whole batch went through.

The native-coin path (execute_native) is single-signature, runs checks 2-6
and requires the attached value to equal the batch total.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Callable, Optional, Union

from eth_utils import is_address, to_checksum_address

from batch_distributor.assets import AssetBackend
from batch_distributor.batch import (
    Batch,
    BatchIdLike,
    ExecutionRecord,
    TransferRecord,
    checked_total,
    is_zero_address,
    normalize_batch_id,
)
from batch_distributor.config import NATIVE_ASSET, DistributorConfig
from batch_distributor.digest import SigningDomain, batch_digest
from batch_distributor.errors import (
    AssetNotWhitelisted,
    BatchAlreadyExecuted,
    BatchExpired,
    BatchTooLarge,
    DistributorError,
    EmptyBatch,
    IncorrectNativeValue,
    InsufficientBalance,
    InvalidAmount,
    InvalidArrayLengths,
    InvalidBatchId,
    InvalidRecipient,
    SameSubmitterAndExecutorNotAllowed,
    TransferFailed,
)
from batch_distributor.ledger import BatchLedger, InMemoryBatchLedger
from batch_distributor.signatures import (
    SignatureLike,
    recover_signer,
    same_address,
    verify_signer,
)


logger = logging.getLogger(__name__)

Event = Union[TransferRecord, ExecutionRecord]
EventListener = Callable[[Event], None]

DEFAULT_EVENT_LOG_SIZE = 1000


class ExecutionEngine:

    def __init__(
        self,
        config: DistributorConfig,
        assets: AssetBackend,
        ledger: Optional[BatchLedger] = None,
        allowed_assets: Optional[set[str]] = None,
        clock: Callable[[], float] = time.time,
        event_log_size: int = DEFAULT_EVENT_LOG_SIZE,
    ):
        self.config = config
        self.domain = SigningDomain.from_config(config)
        self.address = to_checksum_address(config.verifying_contract)
        self.assets = assets
        self.ledger = ledger if ledger is not None else InMemoryBatchLedger()
        self.max_batch_size = config.max_batch_size
        # Most recent events only; listeners receive every event.
        self.events: deque[Event] = deque(maxlen=event_log_size)
        self._allowed = {to_checksum_address(a) for a in (allowed_assets or ())}
        self._listeners: list[EventListener] = []
        self._clock = clock
        # Executions are serialized like transactions on the host chain.
        self._lock = threading.RLock()

    # Read-only helpers

    def compute_digest(self, batch: Batch) -> bytes:
        return batch_digest(self.domain, batch)

    def recover_signer(self, batch: Batch, signature: SignatureLike) -> str:
        """Who signed this batch? Zero address when nobody did."""
        return recover_signer(self.compute_digest(batch), signature)

    def is_executed(self, batch_id: BatchIdLike) -> bool:
        return self.ledger.is_executed(batch_id)

    def is_asset_allowed(self, asset: str) -> bool:
        return is_address(asset) and to_checksum_address(asset) in self._allowed

    # Policy state, changed through the distributor's admin surface

    def set_asset_allowed(self, asset: str, allowed: bool) -> None:
        asset = to_checksum_address(asset)
        if allowed:
            self._allowed.add(asset)
        else:
            self._allowed.discard(asset)

    def set_max_batch_size(self, size: int) -> None:
        if size < 1:
            raise ValueError(f"max batch size must be at least 1, got {size}")
        self.max_batch_size = size

    def subscribe(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    # Execution

    def execute_dual_sig(
        self,
        caller: str,
        batch: Batch,
        submitter: str,
        submitter_sig: SignatureLike,
        now: Optional[float] = None,
    ) -> ExecutionRecord:
        try:
            if not self.is_asset_allowed(batch.asset):
                raise AssetNotWhitelisted(f"asset {batch.asset} is not whitelisted")
            self._check_shape(batch.batch_id, batch.recipients, batch.amounts)

            digest = self.compute_digest(batch)
            verify_signer(digest, submitter_sig, submitter)
            if same_address(caller, submitter):
                raise SameSubmitterAndExecutorNotAllowed(
                    "submitter and executor must be different accounts"
                )

            now = self._clock() if now is None else now
            if self.config.enforce_deadline and batch.is_expired(now):
                raise BatchExpired(
                    f"batch deadline {batch.deadline} passed at {int(now)}"
                )

            return self._disburse(
                batch_id=batch.batch_id,
                asset=to_checksum_address(batch.asset),
                recipients=batch.recipients,
                amounts=batch.amounts,
                submitter=to_checksum_address(submitter),
                executor=to_checksum_address(caller),
                now=now,
            )
        except DistributorError as e:
            logger.warning("batch %s rejected: %s (%s)", batch.batch_id_hex, e.code, e)
            raise

    def execute_native(
        self,
        caller: str,
        batch_id: BatchIdLike,
        recipients: list[str],
        amounts: list[int],
        value: int,
        now: Optional[float] = None,
    ) -> ExecutionRecord:
        try:
            batch_id = self._check_shape(batch_id, recipients, amounts)
            total = checked_total(amounts)
            if value != total:
                raise IncorrectNativeValue(
                    f"attached value {value} does not equal batch total {total}"
                )
            caller = to_checksum_address(caller)
            return self._disburse(
                batch_id=batch_id,
                asset=NATIVE_ASSET,
                recipients=recipients,
                amounts=amounts,
                submitter=caller,
                executor=caller,
                now=self._clock() if now is None else now,
                attached_from=caller,
            )
        except DistributorError as e:
            logger.warning("native batch rejected: %s (%s)", e.code, e)
            raise

    def _check_shape(
        self, batch_id: BatchIdLike, recipients: list[str], amounts: list[int]
    ) -> bytes:
        batch_id = normalize_batch_id(batch_id)
        if not any(batch_id):
            raise InvalidBatchId("batch id must be non-zero")
        if self.ledger.is_executed(batch_id):
            raise BatchAlreadyExecuted(f"batch 0x{batch_id.hex()} already executed")
        if not recipients:
            raise EmptyBatch("batch has no recipients")
        if len(recipients) != len(amounts):
            raise InvalidArrayLengths(
                f"{len(recipients)} recipients but {len(amounts)} amounts"
            )
        if len(recipients) > self.max_batch_size:
            raise BatchTooLarge(
                f"{len(recipients)} recipients exceed the limit of {self.max_batch_size}"
            )
        return batch_id

    def _disburse(
        self,
        batch_id: bytes,
        asset: str,
        recipients: list[str],
        amounts: list[int],
        submitter: str,
        executor: str,
        now: float,
        attached_from: Optional[str] = None,
    ) -> ExecutionRecord:
        with self._lock:
            self.ledger.mark_executed(batch_id)
            try:
                with self.assets.atomic():
                    transfers = self._pay_all(
                        batch_id, asset, recipients, amounts, attached_from
                    )
            except BaseException:
                self.ledger._release(batch_id)
                raise

        record = ExecutionRecord(
            batch_id=batch_id,
            asset=asset,
            submitter=submitter,
            executor=executor,
            recipient_count=len(recipients),
            total_amount=sum(amounts),
            timestamp=int(now),
            transfers=tuple(transfers),
        )
        logger.info(
            "batch 0x%s executed: %d transfers, total %d of %s",
            batch_id.hex(), record.recipient_count, record.total_amount, asset,
        )
        for event in (*transfers, record):
            self._publish(event)
        return record

    def _pay_all(
        self,
        batch_id: bytes,
        asset: str,
        recipients: list[str],
        amounts: list[int],
        attached_from: Optional[str],
    ) -> list[TransferRecord]:
        total = checked_total(amounts)

        if attached_from is not None:
            if not self.assets.transfer(asset, attached_from, self.address, total):
                raise InsufficientBalance(
                    f"{attached_from} cannot attach {total} native value"
                )
        balance = self.assets.balance_of(asset, self.address)
        if balance < total:
            raise InsufficientBalance(
                f"distributor holds {balance} of {asset}, batch needs {total}"
            )

        for i, (recipient, amount) in enumerate(zip(recipients, amounts)):
            if is_zero_address(recipient):
                raise InvalidRecipient(f"recipient {i} is the zero address")
            if amount == 0:
                raise InvalidAmount(f"amount {i} is zero")

        transfers = []
        for recipient, amount in zip(recipients, amounts):
            recipient = to_checksum_address(recipient)
            try:
                ok = self.assets.transfer(asset, self.address, recipient, amount)
            except DistributorError:
                raise
            except Exception as e:
                raise TransferFailed(f"transfer of {amount} to {recipient} raised: {e}") from e
            if not ok:
                raise TransferFailed(f"transfer of {amount} to {recipient} failed")
            transfers.append(TransferRecord(batch_id, asset, recipient, amount))
        return transfers

    def _publish(self, event: Event) -> None:
        self.events.append(event)
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("event listener %r failed", listener)
