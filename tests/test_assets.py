import pytest

from batch_distributor.assets import InMemoryAssetBackend

from conftest import R1, R2, R3, TOKEN


@pytest.fixture
def backend():
    b = InMemoryAssetBackend()
    b.mint(TOKEN, R1, 100)
    return b


def test_transfer(backend):
    assert backend.transfer(TOKEN, R1, R2, 40)
    assert backend.balance_of(TOKEN, R1) == 60
    assert backend.balance_of(TOKEN, R2.lower()) == 40


def test_overdraft_fails(backend):
    assert not backend.transfer(TOKEN, R1, R2, 101)
    assert backend.balance_of(TOKEN, R1) == 100


def test_atomic_rolls_back(backend):
    with pytest.raises(RuntimeError):
        with backend.atomic():
            backend.transfer(TOKEN, R1, R2, 30)
            backend.transfer(TOKEN, R2, R3, 10)
            raise RuntimeError("abort")
    assert backend.balance_of(TOKEN, R1) == 100
    assert backend.balance_of(TOKEN, R2) == 0
    assert backend.balance_of(TOKEN, R3) == 0


def test_nested_atomic_rolls_back_to_outer(backend):
    with pytest.raises(RuntimeError):
        with backend.atomic():
            backend.transfer(TOKEN, R1, R2, 30)
            with backend.atomic():
                backend.transfer(TOKEN, R1, R3, 20)
            raise RuntimeError("abort")
    assert backend.balance_of(TOKEN, R1) == 100


def test_rejecting_recipient(backend):
    backend.rejecting.add(R2)
    assert not backend.transfer(TOKEN, R1, R2, 1)
