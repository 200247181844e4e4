"""
Custody of the assets the distributor pays out.

The distributor does not keep its own balance ledger; it drives an
AssetBackend. A real deployment's backend is the chain itself. The
in-memory backend here stands in for it in tests and dry runs, including
the host's all-or-nothing transaction semantics via atomic().
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from eth_utils import to_checksum_address

from batch_distributor.config import NATIVE_ASSET


logger = logging.getLogger(__name__)


class AssetBackend:
    """What the execution engine needs from the asset layer."""

    def balance_of(self, asset: str, holder: str) -> int:
        raise NotImplementedError

    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> bool:
        """Move `amount` of `asset`. Returns False (or raises) on failure."""
        raise NotImplementedError

    def atomic(self):
        """Context manager: undo every transfer made inside it if it raises."""
        raise NotImplementedError


def _key(asset: str, holder: str) -> tuple[str, str]:
    return to_checksum_address(asset), to_checksum_address(holder)


class InMemoryAssetBackend(AssetBackend):
    """
    Balances in a dict, keyed by (asset, holder).

    `rejecting` holds addresses whose incoming transfers fail, the way a
    token with a blocklist or a contract without a payable fallback would.
    """

    def __init__(self, rejecting: Optional[set[str]] = None):
        self._balances: dict[tuple[str, str], int] = {}
        self._lock = threading.RLock()
        self._journals = threading.local()
        self.rejecting = {to_checksum_address(a) for a in (rejecting or ())}

    def mint(self, asset: str, holder: str, amount: int) -> None:
        with self._lock:
            key = _key(asset, holder)
            self._balances[key] = self._balances.get(key, 0) + amount

    def balance_of(self, asset: str, holder: str) -> int:
        with self._lock:
            return self._balances.get(_key(asset, holder), 0)

    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> bool:
        if to_checksum_address(recipient) in self.rejecting:
            logger.debug("transfer to %s rejected", recipient)
            return False
        with self._lock:
            src = _key(asset, sender)
            dst = _key(asset, recipient)
            if self._balances.get(src, 0) < amount:
                return False
            self._balances[src] -= amount
            self._balances[dst] = self._balances.get(dst, 0) + amount
            journal = getattr(self._journals, "stack", None)
            if journal:
                journal[-1].append((asset, sender, recipient, amount))
        return True

    def receive_native(self, sender: str, holder: str, amount: int) -> bool:
        """Attach native value to a call, as msg.value would."""
        return self.transfer(NATIVE_ASSET, sender, holder, amount)

    @contextmanager
    def atomic(self) -> Iterator[None]:
        stack = getattr(self._journals, "stack", None)
        if stack is None:
            stack = self._journals.stack = []
        stack.append([])
        try:
            yield
        except BaseException:
            entries = stack.pop()
            with self._lock:
                for asset, sender, recipient, amount in reversed(entries):
                    self._balances[_key(asset, recipient)] -= amount
                    self._balances[_key(asset, sender)] += amount
            if entries:
                logger.debug("rolled back %d transfers", len(entries))
            raise
        else:
            entries = stack.pop()
            if stack:
                stack[-1].extend(entries)
