"""Pydantic schema package for API contracts."""

from contractflow.schemas.common import APIEnvelope, ErrorEnvelope
from contractflow.schemas.contracts import (
    ContractCreateRequest,
    ContractEventResponse,
    ContractorSignRequest,
    ContractResponse,
    ContractUpdateRequest,
    FinalizeResponse,
    PaymentResponse,
    SendResponse,
    VoidRequest,
)
from contractflow.schemas.payments import WebhookAck
from contractflow.schemas.signing import (
    CheckoutRequest,
    CheckoutResponse,
    CompleteResponse,
    PublicContractView,
    SigningResponse,
    SignRequest,
)

__all__ = [
    "APIEnvelope",
    "CheckoutRequest",
    "CheckoutResponse",
    "CompleteResponse",
    "ContractCreateRequest",
    "ContractEventResponse",
    "ContractResponse",
    "ContractUpdateRequest",
    "ContractorSignRequest",
    "ErrorEnvelope",
    "FinalizeResponse",
    "PaymentResponse",
    "PublicContractView",
    "SendResponse",
    "SignRequest",
    "SigningResponse",
    "VoidRequest",
    "WebhookAck",
]
