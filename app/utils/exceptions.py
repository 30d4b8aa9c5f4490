# app/utils/exceptions.py - Orchestrator error taxonomy

from fastapi import status


class OrchestratorError(Exception):
    """Base class for failures surfaced through the operation status."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable: bool = True
    default_message: str = "Operation failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotConnected(OrchestratorError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Please connect wallet first"


class NotReady(OrchestratorError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Encryption session is not ready"


class SessionInitFailure(OrchestratorError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "FHEVM initialization failed"


class EncryptionFailure(OrchestratorError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Encryption failed"


class UserRejected(OrchestratorError):
    status_code = status.HTTP_409_CONFLICT
    retryable = False
    default_message = "Transaction rejected"


class SubmissionFailure(OrchestratorError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Submission failed"


class VerificationFailure(OrchestratorError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Decryption failed"


class LoadFailure(OrchestratorError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Failed to load data"


class AlreadyVerifiedRace(OrchestratorError):
    status_code = status.HTTP_409_CONFLICT
    retryable = False
    default_message = "Data is already verified"


class InvalidMoraleValue(OrchestratorError):
    status_code = status.HTTP_422_UNPROCESSABLE_CONTENT
    retryable = False
    default_message = "Morale value must be an integer between 1 and 10"
