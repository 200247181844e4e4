import pytest

from batch_distributor.companion import sign_batch
from batch_distributor.config import ZERO_ADDRESS
from batch_distributor.digest import batch_digest
from batch_distributor.errors import InvalidSignature, InvalidSigner
from batch_distributor.signatures import (
    SECP256K1_N,
    recover_signer,
    recover_signer_strict,
    signature_bytes,
    verify_signer,
)


@pytest.fixture
def signed(domain, batch, submitter):
    approval = sign_batch(submitter.key, domain, batch)
    return batch_digest(domain, batch), signature_bytes(approval.signature)


def test_recover_happy_case(signed, submitter):
    digest, sig = signed
    assert recover_signer(digest, sig) == submitter.address


def test_recover_accepts_hex_string(signed, submitter):
    digest, sig = signed
    assert recover_signer(digest, "0x" + sig.hex()) == submitter.address


def test_recover_accepts_zero_based_v(signed, submitter):
    digest, sig = signed
    assert sig[64] in (27, 28)
    zero_based = sig[:64] + bytes([sig[64] - 27])
    assert recover_signer(digest, zero_based) == submitter.address


def test_other_digest_recovers_someone_else(signed, submitter):
    digest, sig = signed
    other = bytes(31) + b"\x01"
    assert recover_signer(other, sig) != submitter.address


@pytest.mark.parametrize("bad", [
    b"",
    b"\x00" * 64,
    b"\x00" * 66,
    "0xnothex",
])
def test_malformed_recovers_zero(signed, bad):
    digest, _ = signed
    assert recover_signer(digest, bad) == ZERO_ADDRESS


def test_bad_v_recovers_zero(signed):
    digest, sig = signed
    assert recover_signer(digest, sig[:64] + bytes([29])) == ZERO_ADDRESS


def test_zero_r_and_s_recover_zero(signed):
    digest, sig = signed
    assert recover_signer(digest, bytes(64) + sig[64:]) == ZERO_ADDRESS


def test_malleable_high_s_rejected(signed):
    digest, sig = signed
    s = int.from_bytes(sig[32:64], "big")
    flipped_v = 27 if sig[64] == 28 else 28
    malleated = sig[:32] + (SECP256K1_N - s).to_bytes(32, "big") + bytes([flipped_v])
    assert recover_signer(digest, malleated) == ZERO_ADDRESS


def test_strict_raises_invalid_signature(signed):
    digest, _ = signed
    with pytest.raises(InvalidSignature):
        recover_signer_strict(digest, b"\x00" * 65)


def test_verify_signer(signed, submitter, executor):
    digest, sig = signed
    assert verify_signer(digest, sig, submitter.address.lower()) == submitter.address
    with pytest.raises(InvalidSigner):
        verify_signer(digest, sig, executor.address)
