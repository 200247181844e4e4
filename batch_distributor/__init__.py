"""
Batch Distributor — dual-signature batch payments for EVM chains.

A submitter approves a batch of ERC-20 (or native coin) transfers with an
off-chain EIP-712 signature; a separate verifier co-signs by executing it.
Each batch id can be executed exactly once.
"""

__version__ = "0.1.0"
