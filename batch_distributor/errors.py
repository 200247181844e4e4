"""
Named failure reasons for batch validation, authorization and execution.

Every failure is raised to the caller; nothing is retried internally.
"""

from __future__ import annotations


class DistributorError(Exception):
    """Base class. `code` is the stable failure name."""

    code = "DistributorError"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)


# Input shape: rejected before any state change.

class InputShapeError(DistributorError):
    code = "InputShapeError"


class EmptyBatch(InputShapeError):
    code = "EmptyBatch"


class InvalidArrayLengths(InputShapeError):
    code = "InvalidArrayLengths"


class BatchTooLarge(InputShapeError):
    code = "BatchTooLarge"


class InvalidBatchId(InputShapeError):
    code = "InvalidBatchId"


class InvalidRecipient(InputShapeError):
    code = "InvalidRecipient"


class InvalidAmount(InputShapeError):
    code = "InvalidAmount"


class AmountOverflow(InputShapeError):
    code = "AmountOverflow"


class InvalidDeadline(InputShapeError):
    code = "InvalidDeadline"


# Authorization: protocol or malicious-input problems.

class AuthorizationError(DistributorError):
    code = "AuthorizationError"


class InvalidSignature(AuthorizationError):
    code = "InvalidSignature"


class InvalidSigner(AuthorizationError):
    code = "InvalidSigner"


class SameSubmitterAndExecutorNotAllowed(AuthorizationError):
    code = "SameSubmitterAndExecutorNotAllowed"


class BatchExpired(AuthorizationError):
    code = "BatchExpired"


class MissingRole(AuthorizationError):
    code = "MissingRole"


# Replay: permanent for the batch id.

class ReplayError(DistributorError):
    code = "ReplayError"


class BatchAlreadyExecuted(ReplayError):
    code = "BatchAlreadyExecuted"


# Policy: administrative state blocks execution.

class PolicyError(DistributorError):
    code = "PolicyError"


class AssetNotWhitelisted(PolicyError):
    code = "AssetNotWhitelisted"


class DistributorPaused(PolicyError):
    code = "DistributorPaused"


# Resource: the whole batch is aborted, nobody is partially paid.

class ResourceError(DistributorError):
    code = "ResourceError"


class InsufficientBalance(ResourceError):
    code = "InsufficientBalance"


class IncorrectNativeValue(ResourceError):
    code = "IncorrectNativeValue"


class TransferFailed(ResourceError):
    code = "TransferFailed"
