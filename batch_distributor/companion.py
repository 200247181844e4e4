"""
Off-chain side of the protocol.

The submitter signs the EIP-712 typed data for a batch with their wallet
key (no transaction, no gas) and hands the payload plus signature to the
executor, who checks it here before spending gas on execution.

The typed data goes through eth-account's EIP-712 encoder, the same path a
wallet takes for eth_signTypedData_v4. Its digest must equal
digest.batch_digest byte for byte; the array hashes are shared with it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Optional

from eth_account import Account
from eth_account.messages import SignableMessage, encode_typed_data
from eth_utils import keccak, to_checksum_address

from batch_distributor.batch import Batch, checked_deadline
from batch_distributor.digest import SigningDomain, hash_amounts, hash_recipients
from batch_distributor.errors import SameSubmitterAndExecutorNotAllowed
from batch_distributor.signatures import (
    SignatureLike,
    recover_signer,
    same_address,
    signature_bytes,
    verify_signer,
)


EIP712_DOMAIN_FIELDS = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

BATCH_TOKEN_FIELDS = [
    {"name": "batchId", "type": "bytes32"},
    {"name": "token", "type": "address"},
    {"name": "recipientsHash", "type": "bytes32"},
    {"name": "amountsHash", "type": "bytes32"},
    {"name": "totalAmount", "type": "uint256"},
    {"name": "deadline", "type": "uint256"},
]


def build_typed_data(domain: SigningDomain, batch: Batch) -> dict:
    """Full eth_signTypedData_v4 payload for a batch."""
    return {
        "types": {
            "EIP712Domain": EIP712_DOMAIN_FIELDS,
            "BatchToken": BATCH_TOKEN_FIELDS,
        },
        "primaryType": "BatchToken",
        "domain": domain.as_dict(),
        "message": {
            "batchId": batch.batch_id,
            "token": to_checksum_address(batch.asset),
            "recipientsHash": hash_recipients(batch.recipients),
            "amountsHash": hash_amounts(batch.amounts),
            "totalAmount": batch.total_amount,
            "deadline": checked_deadline(batch.deadline),
        },
    }


def typed_data_json(domain: SigningDomain, batch: Batch) -> str:
    """build_typed_data rendered for a wallet: bytes as 0x-hex, ints as strings."""
    data = build_typed_data(domain, batch)
    message = data["message"]
    for key in ("batchId", "recipientsHash", "amountsHash"):
        message[key] = "0x" + message[key].hex()
    for key in ("totalAmount", "deadline"):
        message[key] = str(message[key])
    return json.dumps(data, indent=2)


def encode_batch(domain: SigningDomain, batch: Batch) -> SignableMessage:
    return encode_typed_data(full_message=build_typed_data(domain, batch))


def companion_digest(domain: SigningDomain, batch: Batch) -> bytes:
    message = encode_batch(domain, batch)
    return keccak(b"\x19" + message.version + message.header + message.body)


@dataclass
class SubmitterApproval:
    """A batch plus the submitter's signature, as sent to the executor."""

    batch: Batch
    submitter: str
    signature: str

    def to_dict(self) -> dict:
        return {
            "batch": self.batch.to_dict(),
            "submitter": self.submitter,
            "signature": self.signature,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SubmitterApproval":
        for key in ("batch", "submitter", "signature"):
            if key not in data:
                raise ValueError(f"approval is missing '{key}'")
        return cls(
            batch=Batch.from_dict(data["batch"]),
            submitter=to_checksum_address(data["submitter"]),
            signature=str(data["signature"]),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, text: str) -> "SubmitterApproval":
        return cls.from_dict(json.loads(text))

    def summary(self) -> str:
        return "\n".join([
            "=== Submitter approval ===",
            f"Batch id: {self.batch.batch_id_hex}",
            f"Asset: {self.batch.asset}",
            f"Recipients: {len(self.batch.recipients)}",
            f"Total amount: {self.batch.total_amount}",
            f"Deadline: {self.batch.deadline}",
            f"Submitter: {self.submitter}",
            f"Signature: {self.signature}",
        ])


def sign_batch(private_key, domain: SigningDomain, batch: Batch) -> SubmitterApproval:
    """Submitter step: sign the batch off-chain."""
    account = Account.from_key(private_key)
    signed = account.sign_message(encode_batch(domain, batch))
    return SubmitterApproval(
        batch=batch,
        submitter=account.address,
        signature="0x" + bytes(signed.signature).hex(),
    )


def who_signed(domain: SigningDomain, batch: Batch, signature: SignatureLike) -> str:
    """Signer of `signature` over `batch`, or the zero address."""
    return recover_signer(companion_digest(domain, batch), signature_bytes(signature))


def preflight(
    domain: SigningDomain,
    approval: SubmitterApproval,
    executor: Optional[str] = None,
) -> str:
    """
    Executor-side check before broadcasting.

    Raises the same errors the engine would for a bad signature, a wrong
    submitter, or an executor who is also the submitter. Returns the
    recovered submitter.
    """
    digest = companion_digest(domain, approval.batch)
    signer = verify_signer(digest, approval.signature, approval.submitter)
    if executor is not None and same_address(executor, approval.submitter):
        raise SameSubmitterAndExecutorNotAllowed(
            "submitter and executor must be different accounts"
        )
    return signer
