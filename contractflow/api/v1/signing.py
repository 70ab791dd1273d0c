"""Public signing pages; the signing token in the path is the only credential."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from contractflow.api.v1._authz import client_ip
from contractflow.api.v1.errors import domain_errors
from contractflow.core import dependencies
from contractflow.core.dependencies import get_db_session
from contractflow.core.enums import ActorType, ContractStatus
from contractflow.core.exceptions import PreconditionFailedError
from contractflow.schemas.signing import (
    CheckoutRequest,
    CheckoutResponse,
    CheckoutStatusResponse,
    CompleteResponse,
    PublicContractView,
    SigningResponse,
    SignRequest,
)
from contractflow.services.contract_service import SignaturePayload
from contractflow.services.signature_service import content_hash
from contractflow.utils.money import from_cents

router = APIRouter(prefix="/sign", tags=["signing"])


def _caller_ip(request: Request, forwarded_for: str | None) -> str:
    return client_ip(forwarded_for, request.client.host if request.client else None)


@router.get("/{token}")
def view_contract(
    token: str,
    request: Request,
    forwarded_for: str | None = Header(default=None, alias="X-Forwarded-For"),
    db: Session = Depends(get_db_session),
) -> PublicContractView:
    with domain_errors():
        contract = dependencies.build_contract_service(db).get_for_token(token, ip_address=_caller_ip(request, forwarded_for))
        remaining = dependencies.build_payment_service(db).remaining_balance_cents(contract)
        return PublicContractView.build(contract, content_hash(contract.content), remaining)


@router.post("/{token}")
def sign_contract(
    token: str,
    payload: SignRequest,
    request: Request,
    forwarded_for: str | None = Header(default=None, alias="X-Forwarded-For"),
    user_agent: str | None = Header(default=None, alias="User-Agent"),
    db: Session = Depends(get_db_session),
) -> SigningResponse:
    with domain_errors():
        result = dependencies.build_contract_service(db).sign_contract(
            token,
            SignaturePayload(
                signer_name=payload.full_name,
                signature_data_url=payload.signature_data_url,
                signer_email=payload.email,
                contract_hash=payload.contract_hash,
            ),
            ip_address=_caller_ip(request, forwarded_for),
            user_agent=user_agent,
        )
        remaining = dependencies.build_payment_service(db).remaining_balance_cents(result.contract)
        return SigningResponse(
            status=result.contract.status,
            signed_at=result.contract.signed_at,
            payment_required=remaining > 0,
            warnings=result.warnings,
        )


@router.post("/{token}/checkout")
def create_checkout(
    token: str,
    payload: CheckoutRequest,
    request: Request,
    forwarded_for: str | None = Header(default=None, alias="X-Forwarded-For"),
    db: Session = Depends(get_db_session),
) -> CheckoutResponse:
    with domain_errors():
        result = dependencies.build_payment_service(db).create_checkout(
            token, kind=payload.kind, ip_address=_caller_ip(request, forwarded_for), client_email=payload.email
        )
        return CheckoutResponse(
            checkout_url=result.checkout_url,
            session_id=result.session_id,
            amount=from_cents(result.amount_cents),
            kind=result.kind,
            warnings=result.warnings,
        )


@router.get("/{token}/checkout/{session_id}")
def checkout_status(
    token: str,
    session_id: str,
    request: Request,
    forwarded_for: str | None = Header(default=None, alias="X-Forwarded-For"),
    db: Session = Depends(get_db_session),
) -> CheckoutStatusResponse:
    """Check a returning client's checkout session; the webhook still applies the payment."""
    with domain_errors():
        result = dependencies.build_payment_service(db).verify_checkout(
            token, session_id, ip_address=_caller_ip(request, forwarded_for)
        )
        return CheckoutStatusResponse(
            session_id=result.session_id,
            paid=result.paid,
            payment_status=result.payment_status,
            amount=from_cents(result.amount_cents) if result.amount_cents is not None else None,
            currency=result.currency,
            contract_status=result.contract.status,
            recorded=result.recorded,
        )


@router.post("/{token}/complete")
def complete_contract(
    token: str,
    request: Request,
    forwarded_for: str | None = Header(default=None, alias="X-Forwarded-For"),
    db: Session = Depends(get_db_session),
) -> CompleteResponse:
    """Finish a contract once nothing is owed; paid contracts are finalized here too."""
    with domain_errors():
        contract = dependencies.build_contract_service(db).get_for_token(token, ip_address=_caller_ip(request, forwarded_for))
        payments = dependencies.build_payment_service(db)
        warnings: list[str] = []

        if contract.status == ContractStatus.COMPLETED.value and contract.pdf_url:
            return CompleteResponse(status=contract.status, pdf_url=contract.pdf_url)
        if contract.status == ContractStatus.SIGNED.value:
            if payments.remaining_balance_cents(contract) > 0:
                raise PreconditionFailedError("Payment is still required for this contract.", contract_id=contract.id)
            contract = payments.settle_zero_balance(contract, actor_type=ActorType.CLIENT)
        elif contract.status not in (ContractStatus.PAID.value, ContractStatus.COMPLETED.value):
            raise PreconditionFailedError("This contract cannot be completed yet.", contract_id=contract.id)

        result = dependencies.build_finalization_service(db).finalize(
            contract.id, company_id=contract.company_id, actor_type=ActorType.CLIENT, actor_id=contract.client_id
        )
        warnings.extend(result.warnings)
        return CompleteResponse(status=result.contract.status, pdf_url=result.pdf_url, warnings=warnings)
