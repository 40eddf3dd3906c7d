# SPDX-License-Identifier: MPL-2.0
"""Custom exceptions for acc trust enforcement.

Trust failures (a gate refused to let a workload through) and operational
failures (a tool was missing after the gate already allowed the workload) are
kept in separate branches so that callers can map them to different exit
codes.
"""

from typing import Any, Dict, Optional


class AccError(Exception):
    """Base exception for all acc errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        """Initialize the exception.

        Args:
            message: Error message
            details: Optional dictionary with additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class DigestUnresolvedError(AccError):
    """Raised when no container tool could resolve an image digest."""

    pass


class StateNotFoundError(AccError):
    """Raised when no usable verification record exists for an image."""

    pass


class TrustGateError(AccError):
    """Base exception for decisions that block an operation on trust grounds."""

    def __init__(
        self,
        message: str,
        remediation: str = "",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Initialize the trust gate error.

        Args:
            message: Error message
            remediation: Command(s) the operator should run to recover
            details: Optional dictionary with additional error details
        """
        super().__init__(message, details)
        self.remediation = remediation

    def __str__(self) -> str:
        if not self.remediation:
            return self.message
        return f"{self.message}\n\nRemediation:\n  {self.remediation}"


class NoVerificationStateError(TrustGateError):
    """Raised when an operation needs a verification record and none exists."""

    pass


class ImageMismatchError(TrustGateError):
    """Raised when the target image is not the image that was verified."""

    pass


class VerificationFailedError(TrustGateError):
    """Raised when the verification record for an image did not pass."""

    pass


class AttestationRequiredError(TrustGateError):
    """Raised when attestation enforcement finds no valid attestation."""

    pass


class CanonicalizationError(AccError):
    """Raised when data cannot be canonicalized."""

    pass


class SchemaValidationError(AccError):
    """Raised when a document does not conform to its published JSON schema."""

    pass


class CryptographicError(AccError):
    """Raised when cryptographic operations fail."""

    pass


class InvalidKeyError(CryptographicError):
    """Raised when a cryptographic key is invalid or malformed."""

    pass


class ConfigurationError(AccError):
    """Raised when configuration is invalid or missing."""

    pass


class PolicyEvaluationError(AccError):
    """Raised when the external policy engine cannot produce a decision."""

    pass


class RegistryError(AccError):
    """Raised when a remote registry operation fails."""

    pass


class RuntimeUnavailableError(AccError):
    """Raised when no container runtime or push tool is installed."""

    pass


class WorkloadExecutionError(AccError):
    """Raised when the container runtime fails after trust enforcement passed."""

    pass
