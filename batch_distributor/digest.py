"""
EIP-712 digest for a BatchToken approval.

This is the encoding the distributor contract performs on-chain:

    recipientsHash = keccak256(abi.encode(address[] recipients))
    amountsHash    = keccak256(abi.encode(uint256[] amounts))
    structHash     = keccak256(abi.encode(BATCH_TOKEN_TYPEHASH, batchId, token,
                                          recipientsHash, amountsHash,
                                          totalAmount, deadline))
    digest         = keccak256(0x1901 || domainSeparator || structHash)

The arrays are hashed rather than embedded so the signed struct has a
constant size whatever the batch length. Any change here must be mirrored
by the typed-data payload in companion.py, or signatures stop verifying.
"""

from __future__ import annotations

from dataclasses import dataclass

from eth_abi import encode
from eth_utils import is_address, keccak, to_checksum_address

from batch_distributor.batch import Batch, checked_deadline, checked_total
from batch_distributor.config import DEFAULT_CHAIN_ID, DOMAIN_NAME, DOMAIN_VERSION
from batch_distributor.errors import InvalidRecipient


EIP712_DOMAIN_TYPE = (
    "EIP712Domain(string name,string version,uint256 chainId,address verifyingContract)"
)
BATCH_TOKEN_TYPE = (
    "BatchToken(bytes32 batchId,address token,bytes32 recipientsHash,"
    "bytes32 amountsHash,uint256 totalAmount,uint256 deadline)"
)

EIP712_DOMAIN_TYPEHASH = keccak(text=EIP712_DOMAIN_TYPE)
BATCH_TOKEN_TYPEHASH = keccak(text=BATCH_TOKEN_TYPE)


@dataclass(frozen=True)
class SigningDomain:
    """Binds signatures to one deployment on one chain."""

    verifying_contract: str
    chain_id: int = DEFAULT_CHAIN_ID
    name: str = DOMAIN_NAME
    version: str = DOMAIN_VERSION

    def as_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": to_checksum_address(self.verifying_contract),
        }

    @classmethod
    def from_config(cls, config) -> "SigningDomain":
        return cls(
            verifying_contract=config.verifying_contract,
            chain_id=config.chain_id,
        )


def _address(value: str, what: str) -> str:
    if not is_address(value):
        raise InvalidRecipient(f"{what} is not an address: {value!r}")
    return to_checksum_address(value)


def hash_recipients(recipients: list[str]) -> bytes:
    addresses = [_address(r, f"recipient {i}") for i, r in enumerate(recipients)]
    return keccak(encode(["address[]"], [addresses]))


def hash_amounts(amounts: list[int]) -> bytes:
    checked_total(amounts)
    return keccak(encode(["uint256[]"], [list(amounts)]))


def domain_separator(domain: SigningDomain) -> bytes:
    return keccak(encode(
        ["bytes32", "bytes32", "bytes32", "uint256", "address"],
        [
            EIP712_DOMAIN_TYPEHASH,
            keccak(text=domain.name),
            keccak(text=domain.version),
            domain.chain_id,
            to_checksum_address(domain.verifying_contract),
        ],
    ))


def struct_hash(batch: Batch) -> bytes:
    return keccak(encode(
        ["bytes32", "bytes32", "address", "bytes32", "bytes32", "uint256", "uint256"],
        [
            BATCH_TOKEN_TYPEHASH,
            batch.batch_id,
            _address(batch.asset, "asset"),
            hash_recipients(batch.recipients),
            hash_amounts(batch.amounts),
            batch.total_amount,
            checked_deadline(batch.deadline),
        ],
    ))


def batch_digest(domain: SigningDomain, batch: Batch) -> bytes:
    """The 32-byte digest the submitter signs and the engine verifies."""
    return keccak(b"\x19\x01" + domain_separator(domain) + struct_hash(batch))
