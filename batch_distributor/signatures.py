"""
Signer recovery for 65-byte secp256k1 signatures.

recover_signer behaves like the EVM's ecrecover guarded the way
OpenZeppelin's ECDSA library guards it: anything malformed, including
malleable upper-half s values, recovers to the zero address instead of
raising. Nothing here touches state, so it is safe for previews.
"""

from __future__ import annotations

import logging
from typing import Union

from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError
from eth_utils import to_checksum_address

from batch_distributor.config import ZERO_ADDRESS
from batch_distributor.errors import InvalidSignature, InvalidSigner


logger = logging.getLogger(__name__)

SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
SECP256K1_HALF_N = SECP256K1_N // 2

SignatureLike = Union[bytes, str]


def signature_bytes(signature: SignatureLike) -> bytes:
    if isinstance(signature, str):
        text = signature[2:] if signature.lower().startswith("0x") else signature
        try:
            return bytes.fromhex(text)
        except ValueError:
            return b""
    return bytes(signature)


def recover_signer(digest: bytes, signature: SignatureLike) -> str:
    """Recover the checksummed signer address, or the zero address."""
    sig = signature_bytes(signature)
    if len(digest) != 32 or len(sig) != 65:
        return ZERO_ADDRESS

    r = int.from_bytes(sig[:32], "big")
    s = int.from_bytes(sig[32:64], "big")
    v = sig[64]
    if v >= 27:
        v -= 27
    if v not in (0, 1):
        return ZERO_ADDRESS
    if not (0 < r < SECP256K1_N) or not (0 < s <= SECP256K1_HALF_N):
        return ZERO_ADDRESS

    try:
        public_key = keys.Signature(vrs=(v, r, s)).recover_public_key_from_msg_hash(digest)
    except (BadSignature, ValidationError) as e:
        logger.debug("signature recovery failed: %s", e)
        return ZERO_ADDRESS
    return public_key.to_checksum_address()


def recover_signer_strict(digest: bytes, signature: SignatureLike) -> str:
    signer = recover_signer(digest, signature)
    if signer == ZERO_ADDRESS:
        raise InvalidSignature("signature does not recover to a signer")
    return signer


def same_address(a: str, b: str) -> bool:
    return to_checksum_address(a) == to_checksum_address(b)


def verify_signer(digest: bytes, signature: SignatureLike, expected: str) -> str:
    """
    Check that `signature` over `digest` was produced by `expected`.

    Returns the recovered address. Raises InvalidSignature for a malformed
    signature and InvalidSigner when someone else signed.
    """
    signer = recover_signer_strict(digest, signature)
    if not same_address(signer, expected):
        raise InvalidSigner(f"signed by {signer}, expected {to_checksum_address(expected)}")
    return signer
