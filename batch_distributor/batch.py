"""
Batch payloads and recipient lists.

A Batch is the unit of authorization and execution: one batch id, one
asset, positionally paired recipients and amounts, and a deadline. Amounts
are integers in the asset's base units (wei for the native coin).

Supports:
- CSV/JSON recipient list parsing with decimal amounts
- Off-chain validation of addresses and amounts
- JSON round-tripping of batch payloads between submitter and executor
"""

from __future__ import annotations

import csv
import json
import secrets
import time
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, localcontext
from pathlib import Path
from typing import Optional, Union

from eth_utils import is_address, keccak, to_checksum_address

from batch_distributor.config import (
    DEFAULT_DEADLINE_SECONDS,
    UINT256_MAX,
)
from batch_distributor.errors import (
    AmountOverflow,
    InvalidAmount,
    InvalidBatchId,
    InvalidDeadline,
)


BatchIdLike = Union[bytes, str]


def parse_units(value: Union[str, int, Decimal], decimals: int) -> int:
    """
    Convert a human amount ("1.5") into integer base units.

    Raises ValueError when the value has more fractional digits than the
    asset supports or is not a number.
    """
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"invalid amount '{value}'")
    if not amount.is_finite():
        raise ValueError(f"invalid amount '{value}'")
    with localcontext() as ctx:
        ctx.prec = 100
        scaled = amount.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"amount '{value}' has more than {decimals} decimals")
    return int(scaled)


def format_units(amount: int, decimals: int) -> str:
    """Inverse of parse_units, without trailing zeros."""
    with localcontext() as ctx:
        ctx.prec = 100
        text = format(Decimal(amount).scaleb(-decimals), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def random_batch_id() -> bytes:
    """A fresh 32-byte batch id: keccak256 of 32 random bytes."""
    return keccak(secrets.token_bytes(32))


def normalize_batch_id(batch_id: BatchIdLike) -> bytes:
    """Accept 32 raw bytes or a 0x-prefixed 64 hex digit string."""
    if isinstance(batch_id, str):
        text = batch_id[2:] if batch_id.lower().startswith("0x") else batch_id
        if len(text) != 64:
            raise InvalidBatchId(f"batch id must be 32 bytes, got '{batch_id}'")
        try:
            batch_id = bytes.fromhex(text)
        except ValueError:
            raise InvalidBatchId(f"batch id is not hex: '{batch_id}'")
    if not isinstance(batch_id, (bytes, bytearray)) or len(batch_id) != 32:
        raise InvalidBatchId("batch id must be 32 bytes")
    return bytes(batch_id)


def checked_total(amounts: list[int]) -> int:
    """Sum of amounts; every amount and the sum must fit in a uint256."""
    total = 0
    for i, amount in enumerate(amounts):
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise InvalidAmount(f"amount {i} is not an integer: {amount!r}")
        if amount < 0 or amount > UINT256_MAX:
            raise InvalidAmount(f"amount {i} out of uint256 range: {amount}")
        total += amount
    if total > UINT256_MAX:
        raise AmountOverflow(f"total amount {total} overflows uint256")
    return total


def checked_deadline(deadline: int) -> int:
    """The deadline as a uint256 unix timestamp."""
    if isinstance(deadline, bool) or not isinstance(deadline, int):
        raise InvalidDeadline(f"deadline is not an integer: {deadline!r}")
    if deadline < 0 or deadline > UINT256_MAX:
        raise InvalidDeadline(f"deadline out of uint256 range: {deadline}")
    return deadline


@dataclass
class Recipient:
    """A single payment recipient, amount in human units."""

    address: str
    amount: Decimal
    label: str = ""

    def validate(self) -> list[str]:
        """Validate this recipient. Returns list of error strings."""
        errors = []
        if not is_address(self.address):
            errors.append(f"Invalid address: {self.address}")
        elif int(self.address, 16) == 0:
            errors.append("Recipient is the zero address")
        if not self.amount.is_finite():
            errors.append(f"Amount must be a finite number, got {self.amount}")
        elif self.amount <= 0:
            errors.append(f"Amount must be positive, got {self.amount}")
        return errors

    def base_units(self, decimals: int) -> int:
        return parse_units(self.amount, decimals)


@dataclass
class Batch:
    """The payload both signatures cover."""

    batch_id: bytes
    asset: str
    recipients: list[str]
    amounts: list[int]
    deadline: int

    def __post_init__(self):
        self.batch_id = normalize_batch_id(self.batch_id)
        self.recipients = list(self.recipients)
        self.amounts = list(self.amounts)

    @property
    def total_amount(self) -> int:
        return checked_total(self.amounts)

    @property
    def batch_id_hex(self) -> str:
        return "0x" + self.batch_id.hex()

    def is_expired(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return now > self.deadline

    @classmethod
    def from_recipients(
        cls,
        recipients: list[Recipient],
        asset: str,
        decimals: int,
        batch_id: Optional[BatchIdLike] = None,
        deadline: Optional[int] = None,
    ) -> "Batch":
        """Build a batch from a parsed recipient list."""
        if deadline is None:
            deadline = int(time.time()) + DEFAULT_DEADLINE_SECONDS
        return cls(
            batch_id=random_batch_id() if batch_id is None else batch_id,
            asset=to_checksum_address(asset),
            recipients=[to_checksum_address(r.address) for r in recipients],
            amounts=[r.base_units(decimals) for r in recipients],
            deadline=deadline,
        )

    def to_dict(self) -> dict:
        # Amounts as strings: JSON consumers lose precision above 2**53.
        return {
            "batchId": self.batch_id_hex,
            "asset": self.asset,
            "recipients": list(self.recipients),
            "amounts": [str(a) for a in self.amounts],
            "deadline": self.deadline,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Batch":
        for key in ("batchId", "asset", "recipients", "amounts", "deadline"):
            if key not in data:
                raise ValueError(f"batch is missing '{key}'")
        return cls(
            batch_id=data["batchId"],
            asset=data["asset"],
            recipients=[str(r) for r in data["recipients"]],
            amounts=[int(a) for a in data["amounts"]],
            deadline=int(data["deadline"]),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, text: str) -> "Batch":
        return cls.from_dict(json.loads(text))


@dataclass(frozen=True)
class TransferRecord:
    """Per-transfer audit event."""

    batch_id: bytes
    asset: str
    recipient: str
    amount: int


@dataclass(frozen=True)
class ExecutionRecord:
    """Aggregate audit event emitted once per executed batch."""

    batch_id: bytes
    asset: str
    submitter: str
    executor: str
    recipient_count: int
    total_amount: int
    timestamp: int
    transfers: tuple[TransferRecord, ...] = field(default=(), compare=False)

    def summary(self) -> str:
        """Human-readable summary of the execution."""
        return "\n".join([
            "=== Batch executed ===",
            f"Batch id: 0x{self.batch_id.hex()}",
            f"Asset: {self.asset}",
            f"Submitter: {self.submitter}",
            f"Executor: {self.executor}",
            f"Recipients: {self.recipient_count}",
            f"Total amount: {self.total_amount}",
            f"Timestamp: {self.timestamp}",
        ])


def parse_recipients_csv(filepath: str | Path) -> list[Recipient]:
    """
    Parse a CSV file of recipients.

    Expected format:
        address,amount[,label]
        0x1111111111111111111111111111111111111111,10.5,Alice
        0x2222222222222222222222222222222222222222,5,Bob
    """
    recipients = []
    filepath = Path(filepath)

    with open(filepath, "r", newline="") as f:
        reader = csv.DictReader(f)

        if reader.fieldnames is None:
            raise ValueError("CSV file is empty or has no headers")

        for row_num, row in enumerate(reader, start=2):
            normalized = {
                k.strip().lower(): (v or "").strip()
                for k, v in row.items() if k is not None
            }

            address = normalized.get("address", "")
            amount_str = normalized.get("amount", "0")
            label = normalized.get("label", normalized.get("name", ""))

            if not address:
                raise ValueError(f"Row {row_num}: missing address")

            try:
                amount = Decimal(amount_str)
            except InvalidOperation:
                raise ValueError(
                    f"Row {row_num}: invalid amount '{amount_str}'"
                )
            if not amount.is_finite():
                raise ValueError(
                    f"Row {row_num}: invalid amount '{amount_str}'"
                )

            recipients.append(Recipient(
                address=address,
                amount=amount,
                label=label,
            ))

    return recipients


def parse_recipients_json(filepath: str | Path) -> list[Recipient]:
    """
    Parse a JSON file of recipients.

    Expected format:
        [
            {"address": "0x1111...", "amount": "10.5", "label": "Alice"},
            {"address": "0x2222...", "amount": 5}
        ]
    """
    filepath = Path(filepath)
    with open(filepath, "r") as f:
        data = json.load(f)

    if not isinstance(data, list):
        raise ValueError("JSON must contain a list of recipient objects")

    recipients = []
    for i, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise ValueError(f"Entry {i}: must be an object")
        if "address" not in entry:
            raise ValueError(f"Entry {i}: missing 'address' field")
        if "amount" not in entry:
            raise ValueError(f"Entry {i}: missing 'amount' field")

        try:
            amount = Decimal(str(entry["amount"]))
        except InvalidOperation:
            raise ValueError(f"Entry {i}: invalid amount '{entry['amount']}'")
        if not amount.is_finite():
            raise ValueError(f"Entry {i}: invalid amount '{entry['amount']}'")

        recipients.append(Recipient(
            address=str(entry["address"]),
            amount=amount,
            label=str(entry.get("label", "")),
        ))

    return recipients


def parse_recipients(filepath: str | Path) -> list[Recipient]:
    """Pick the parser from the file extension (CSV unless .json)."""
    filepath = Path(filepath)
    if filepath.suffix.lower() == ".json":
        return parse_recipients_json(filepath)
    return parse_recipients_csv(filepath)


def validate_recipients(
    recipients: list[Recipient],
    max_batch_size: Optional[int] = None,
    allow_duplicates: bool = True,
) -> tuple[bool, list[str]]:
    """
    Validate all recipients. Returns (is_valid, list_of_errors).

    Duplicate addresses are legal on-chain; pass allow_duplicates=False to
    treat them as mistakes.
    """
    errors = []
    seen_addresses = {}

    if not recipients:
        errors.append("Recipient list is empty")
    if max_batch_size is not None and len(recipients) > max_batch_size:
        errors.append(
            f"{len(recipients)} recipients exceed the maximum batch size of {max_batch_size}"
        )

    for i, r in enumerate(recipients):
        for err in r.validate():
            errors.append(f"Recipient {i + 1} ({r.label or r.address[:12]}): {err}")

        key = r.address.lower()
        if not allow_duplicates and key in seen_addresses:
            prev = seen_addresses[key]
            errors.append(
                f"Duplicate address at positions {prev + 1} and {i + 1}: {r.address}"
            )
        seen_addresses.setdefault(key, i)

    return len(errors) == 0, errors


def is_zero_address(address: str) -> bool:
    return not is_address(address) or int(address, 16) == 0
