import pytest
from eth_abi import encode
from eth_account import Account
from eth_utils import keccak, to_checksum_address

from batch_distributor.batch import Batch
from batch_distributor.companion import (
    build_typed_data,
    companion_digest,
    encode_batch,
    sign_batch,
)
from batch_distributor.config import UINT256_MAX
from batch_distributor.digest import (
    BATCH_TOKEN_TYPEHASH,
    EIP712_DOMAIN_TYPEHASH,
    SigningDomain,
    batch_digest,
    domain_separator,
    hash_amounts,
    hash_recipients,
    struct_hash,
)
from batch_distributor.errors import AmountOverflow, InvalidAmount, InvalidRecipient
from batch_distributor.signatures import recover_signer

from conftest import BATCH_ID, CONTRACT, NOW, R1, R2, R3, TOKEN


def test_typehashes():
    assert BATCH_TOKEN_TYPEHASH == keccak(
        text="BatchToken(bytes32 batchId,address token,bytes32 recipientsHash,"
             "bytes32 amountsHash,uint256 totalAmount,uint256 deadline)"
    )
    assert EIP712_DOMAIN_TYPEHASH == keccak(
        text="EIP712Domain(string name,string version,uint256 chainId,address verifyingContract)"
    )


def test_array_hashes_use_dynamic_abi_encoding():
    # offset word, length word, then one word per element
    encoded = encode(["uint256[]"], [[100, 200]])
    assert len(encoded) == 32 * 4
    assert hash_amounts([100, 200]) == keccak(encoded)
    assert hash_recipients([R1, R2]) == keccak(encode(["address[]"], [[R1, R2]]))


def test_array_hashes_are_order_sensitive():
    assert hash_recipients([R1, R2]) != hash_recipients([R2, R1])
    assert hash_amounts([100, 200]) != hash_amounts([200, 100])


def test_recipient_case_does_not_change_hash():
    assert hash_recipients([TOKEN.lower()]) == hash_recipients([TOKEN])


def test_invalid_recipient_rejected():
    with pytest.raises(InvalidRecipient):
        hash_recipients(["0x1234"])


def test_digest_layout(domain, batch):
    expected = keccak(b"\x19\x01" + domain_separator(domain) + struct_hash(batch))
    assert batch_digest(domain, batch) == expected
    assert len(expected) == 32


def test_companion_matches_engine_digest(domain, batch):
    assert companion_digest(domain, batch) == batch_digest(domain, batch)


@pytest.mark.parametrize("recipients,amounts", [
    ([R1], [1]),
    ([R1, R2, R3], [10**18, 5, 7]),
    ([R1, R1], [UINT256_MAX // 2, UINT256_MAX // 2]),
    ([R3] * 50, list(range(1, 51))),
])
def test_companion_matches_engine_digest_for_varied_batches(domain, recipients, amounts):
    batch = Batch(
        batch_id=keccak(text=str(len(recipients))),
        asset=TOKEN,
        recipients=recipients,
        amounts=amounts,
        deadline=NOW,
    )
    assert companion_digest(domain, batch) == batch_digest(domain, batch)


def test_eth_account_recovers_what_the_engine_recovers(domain, batch, submitter):
    approval = sign_batch(submitter.key, domain, batch)
    from_wallet_lib = Account.recover_message(
        encode_batch(domain, batch), signature=approval.signature
    )
    from_engine = recover_signer(batch_digest(domain, batch), approval.signature)
    assert from_wallet_lib == from_engine == submitter.address


def test_domain_binding(batch):
    base = SigningDomain(verifying_contract=CONTRACT, chain_id=56)
    other_chain = SigningDomain(verifying_contract=CONTRACT, chain_id=97)
    other_contract = SigningDomain(verifying_contract=TOKEN, chain_id=56)
    other_version = SigningDomain(verifying_contract=CONTRACT, chain_id=56, version="2")

    digests = {
        batch_digest(d, batch)
        for d in (base, other_chain, other_contract, other_version)
    }
    assert len(digests) == 4


def test_every_field_is_covered(domain, batch):
    original = batch_digest(domain, batch)
    variants = [
        Batch(keccak(text="other"), batch.asset, batch.recipients, batch.amounts, batch.deadline),
        Batch(batch.batch_id, R3, batch.recipients, batch.amounts, batch.deadline),
        Batch(batch.batch_id, batch.asset, [R1, R3], batch.amounts, batch.deadline),
        Batch(batch.batch_id, batch.asset, batch.recipients, [100, 201], batch.deadline),
        Batch(batch.batch_id, batch.asset, batch.recipients, batch.amounts, batch.deadline + 1),
    ]
    for variant in variants:
        assert batch_digest(domain, variant) != original


def test_total_amount_is_sum_of_amounts(domain, batch):
    typed = build_typed_data(domain, batch)
    assert typed["message"]["totalAmount"] == 300
    assert typed["primaryType"] == "BatchToken"
    assert typed["domain"] == {
        "name": "BatchDistributorV2",
        "version": "1",
        "chainId": 56,
        "verifyingContract": to_checksum_address(CONTRACT),
    }


def test_total_overflow_rejected(domain):
    batch = Batch(BATCH_ID, TOKEN, [R1, R2], [UINT256_MAX, 1], NOW)
    with pytest.raises(AmountOverflow):
        batch_digest(domain, batch)


def test_negative_amount_rejected(domain):
    batch = Batch(BATCH_ID, TOKEN, [R1], [-1], NOW)
    with pytest.raises(InvalidAmount):
        batch_digest(domain, batch)


# Reference vectors from the EIP-712 "Ether Mail" example.
MAIL_DOMAIN = SigningDomain(
    verifying_contract="0xCcCCccccCCCCcCCCCCCcCcCccCcCCCcCcccccccC",
    chain_id=1,
    name="Ether Mail",
    version="1",
)
MAIL_DIGEST = bytes.fromhex("be609aee343fb3c4b28e1df9e632fca64fcfaede20f02e86244efddf30957bd2")
MAIL_SIGNATURE = bytes.fromhex(
    "4355c47d63924e8a72e509b65029052eb6c299d53a04e167c5775fd466751c9d"
    "07299936d304c153f6443dfa05f40ff007d72911b6f72307f996231605b91562"
    "1c"
)
MAIL_SIGNER = "0xCD2a3d9F938E13CD947Ec05AbC7FE734Df8DD826"


def test_domain_separator_matches_reference_vector():
    assert domain_separator(MAIL_DOMAIN).hex() == (
        "f2cee375fa42b42143804025fc449deafd50cc031ca257e0b194a650a912090f"
    )


def test_recovery_matches_reference_vector():
    assert recover_signer(MAIL_DIGEST, MAIL_SIGNATURE).lower() == MAIL_SIGNER.lower()


# The fixture batch signed by the 0x22.. key, computed with an independent
# keccak/secp256k1 implementation.
GOLDEN = {
    "domain_separator": "291e2ef461178e1c66d26a4a75430a6c63e03d2b2f5bd67cd804ef15655f38b0",
    "recipients_hash": "9dcdeba52720275f9cb36b6575fb5ddf69e4bd00cc10b1bf8c4d18a2283cb1bf",
    "amounts_hash": "a658f8db487b271b16455552857059f6913deaed74831334405e273c2547a6c1",
    "struct_hash": "7397499526955a76587e2a4013caf7113b7115ca7e4526c56b17d98607113380",
    "digest": "8cfa007c675a0448ca2ddb2406a939d6e6d9dfc441d9cd09d26f1e4867a444a8",
    "signature": (
        "a4cec6b134e9766be6abcbd7d35a230191b36914d4463bc8e86502242a41b7ee"
        "4d6dd161b81bcaad10ebc09f1b94639f4efd94f09e0448035944e7254df76b87"
        "1b"
    ),
    "signer": "0x1563915e194d8cfba1943570603f7606a3115508",
}


def test_engine_digest_matches_golden_vector(domain, batch):
    assert BATCH_TOKEN_TYPEHASH.hex() == (
        "7879a15de4e50a56dc31154ea951341c6de50a5d90d97bb73a673053bd8b97d8"
    )
    assert domain_separator(domain).hex() == GOLDEN["domain_separator"]
    assert hash_recipients(batch.recipients).hex() == GOLDEN["recipients_hash"]
    assert hash_amounts(batch.amounts).hex() == GOLDEN["amounts_hash"]
    assert struct_hash(batch).hex() == GOLDEN["struct_hash"]
    assert batch_digest(domain, batch).hex() == GOLDEN["digest"]


def test_companion_matches_golden_vector(domain, batch, submitter):
    assert submitter.address.lower() == GOLDEN["signer"]
    assert companion_digest(domain, batch).hex() == GOLDEN["digest"]

    approval = sign_batch(submitter.key, domain, batch)
    assert approval.signature == "0x" + GOLDEN["signature"]

    signature = bytes.fromhex(GOLDEN["signature"])
    assert recover_signer(bytes.fromhex(GOLDEN["digest"]), signature).lower() == GOLDEN["signer"]
