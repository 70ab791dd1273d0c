"""Custom exceptions for the ContractFlow application."""


class ContractFlowException(Exception):
    """Base exception for ContractFlow application."""

    error_code = "contractflow_error"

    def __init__(self, message: str = "", **context) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(ContractFlowException):
    """Raised when validation fails."""

    error_code = "validation_error"


class NotFoundError(ContractFlowException):
    """Raised when a resource is not found."""

    error_code = "not_found"


class DatabaseError(ContractFlowException):
    """Raised when a database operation fails."""

    error_code = "database_error"


class ServiceError(ContractFlowException):
    """Raised when a service operation fails."""

    error_code = "service_error"


class ConfigurationError(ContractFlowException):
    """Raised when configuration is invalid."""

    error_code = "configuration_error"


class AuthenticationError(ContractFlowException):
    """Raised when authentication fails."""

    error_code = "authentication_error"


class AuthorizationError(ContractFlowException):
    """Raised when an authenticated caller may not access a resource."""

    error_code = "authorization_error"


# ==============================================================================
# CONTRACT LIFECYCLE
# ==============================================================================


class InvalidTransitionError(ContractFlowException):
    """Raised when a status change is not legal from the current status."""

    error_code = "invalid_transition"


class ContractAlreadySignedError(InvalidTransitionError):
    """Raised when a client tries to sign a contract that is already signed."""

    error_code = "contract_already_signed"


class ContractCancelledError(InvalidTransitionError):
    """Raised when an operation targets a voided contract."""

    error_code = "contract_cancelled"


class ContractLockedError(ContractFlowException):
    """Raised when a frozen field is written after signature."""

    error_code = "contract_locked"


class PreconditionFailedError(ContractFlowException):
    """Raised when a legal transition has an unsatisfied guard."""

    error_code = "precondition_failed"


class SignatureMismatchError(PreconditionFailedError):
    """Raised when the signed content hash no longer matches the contract."""

    error_code = "signature_mismatch"


# ==============================================================================
# SIGNING ACCESS
# ==============================================================================


class SigningTokenError(ContractFlowException):
    """Base class for signing-link failures."""

    error_code = "signing_token_error"


class TokenInvalidError(SigningTokenError):
    error_code = "token_invalid"


class TokenExpiredError(SigningTokenError):
    error_code = "token_expired"


class TokenAlreadyUsedError(SigningTokenError):
    error_code = "token_already_used"


class RateLimitedError(SigningTokenError):
    error_code = "rate_limited"


# ==============================================================================
# PAYMENTS AND ARTIFACTS
# ==============================================================================


class AmountMismatchError(ContractFlowException):
    """Raised when a gateway amount differs from the recomputed expectation."""

    error_code = "amount_mismatch"


class NothingToPayError(ContractFlowException):
    """Raised when the requested payment has no outstanding balance."""

    error_code = "nothing_to_pay"


class GatewayError(ContractFlowException):
    """Raised when the payment gateway rejects or fails a request."""

    error_code = "gateway_error"


class StorageError(ContractFlowException):
    """Raised when object storage fails."""

    error_code = "storage_error"
