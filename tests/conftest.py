import pytest
from eth_account import Account
from eth_utils import to_checksum_address

from batch_distributor.assets import InMemoryAssetBackend
from batch_distributor.batch import Batch
from batch_distributor.config import DistributorConfig
from batch_distributor.digest import SigningDomain
from batch_distributor.distributor import BatchDistributor, Role


TOKEN = to_checksum_address("0x55d398326f99059fF775485246999027B3197955")
CONTRACT = to_checksum_address("0x5FbDB2315678afecb367f032d93F642f64180aa3")
R1 = "0x1111111111111111111111111111111111111111"
R2 = "0x2222222222222222222222222222222222222222"
R3 = "0x3333333333333333333333333333333333333333"
BATCH_ID = "0xaa" + "00" * 30 + "01"
NOW = 1_700_000_000


@pytest.fixture
def admin():
    return Account.from_key("0x" + "11" * 32)


@pytest.fixture
def submitter():
    return Account.from_key("0x" + "22" * 32)


@pytest.fixture
def executor():
    return Account.from_key("0x" + "33" * 32)


@pytest.fixture
def outsider():
    return Account.from_key("0x" + "44" * 32)


@pytest.fixture
def config():
    return DistributorConfig(chain_id=56, verifying_contract=CONTRACT)


@pytest.fixture
def domain(config):
    return SigningDomain.from_config(config)


@pytest.fixture
def batch():
    return Batch(
        batch_id=BATCH_ID,
        asset=TOKEN,
        recipients=[R1, R2],
        amounts=[100, 200],
        deadline=NOW + 3600,
    )


@pytest.fixture
def assets():
    backend = InMemoryAssetBackend()
    backend.mint(TOKEN, CONTRACT, 1_000_000)
    return backend


@pytest.fixture
def distributor(admin, executor, assets, config):
    d = BatchDistributor.create(
        admin.address, assets, config=config, allowed_assets={TOKEN}
    )
    d.grant_role(admin.address, Role.VERIFIER, executor.address)
    return d
