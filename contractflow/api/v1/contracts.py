"""Contractor-facing contract endpoints (bearer token, tenant scoped)."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Header, Request, status
from sqlalchemy.orm import Session

from contractflow.api.v1._authz import authorize, client_ip
from contractflow.api.v1.errors import domain_errors
from contractflow.core import dependencies
from contractflow.core.dependencies import get_db_session
from contractflow.core.enums import ActorType
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
from contractflow.schemas.common import APIEnvelope
from contractflow.services.contract_service import SignaturePayload
from contractflow.utils.money import to_cents

router = APIRouter(tags=["contracts"])

AMOUNT_FIELDS = {"total_amount": "total_amount_cents", "deposit_amount": "deposit_amount_cents"}


def _changes_from(payload: ContractUpdateRequest) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    for key, value in payload.model_dump(exclude_unset=True).items():
        if key in AMOUNT_FIELDS:
            changes[AMOUNT_FIELDS[key]] = to_cents(value)
        else:
            changes[key] = value
    return changes


@router.post("/contracts", status_code=status.HTTP_201_CREATED)
def create_contract(
    payload: ContractCreateRequest,
    authorization: str | None = Header(default=None, alias="Authorization"),
    db: Session = Depends(get_db_session),
) -> ContractResponse:
    with domain_errors():
        user = authorize(authorization)
        contract = dependencies.build_contract_service(db).create_contract(
            company_id=user.company_id,
            contractor_id=user.contractor_id,
            client_id=payload.client_id,
            title=payload.title,
            content=payload.content,
            total_amount_cents=to_cents(payload.total_amount),
            deposit_amount_cents=to_cents(payload.deposit_amount),
            field_values=payload.field_values,
            template_id=payload.template_id,
            currency=payload.currency,
        )
        return ContractResponse.from_model(contract)


@router.get("/contracts/{contract_id}")
def get_contract(
    contract_id: str,
    authorization: str | None = Header(default=None, alias="Authorization"),
    db: Session = Depends(get_db_session),
) -> ContractResponse:
    with domain_errors():
        user = authorize(authorization)
        contract = dependencies.build_contract_service(db).get_contract(contract_id, user.company_id)
        return ContractResponse.from_model(contract)


@router.patch("/contracts/{contract_id}")
def update_contract(
    contract_id: str,
    payload: ContractUpdateRequest,
    authorization: str | None = Header(default=None, alias="Authorization"),
    db: Session = Depends(get_db_session),
) -> ContractResponse:
    with domain_errors():
        user = authorize(authorization)
        contract = dependencies.build_contract_service(db).update_contract(
            contract_id, user.company_id, user.contractor_id, _changes_from(payload)
        )
        return ContractResponse.from_model(contract)


@router.post("/contracts/{contract_id}/send")
def send_contract(
    contract_id: str,
    authorization: str | None = Header(default=None, alias="Authorization"),
    db: Session = Depends(get_db_session),
) -> SendResponse:
    with domain_errors():
        user = authorize(authorization)
        result = dependencies.build_contract_service(db).send_contract(contract_id, user.company_id, user.contractor_id)
        # The signing link itself only travels by email.
        return SendResponse(
            contract=ContractResponse.from_model(result.contract),
            signing_link_expires_at=result.expires_at,
            warnings=result.warnings,
        )


@router.post("/contracts/{contract_id}/resend")
def resend_signing_link(
    contract_id: str,
    authorization: str | None = Header(default=None, alias="Authorization"),
    db: Session = Depends(get_db_session),
) -> SendResponse:
    with domain_errors():
        user = authorize(authorization)
        result = dependencies.build_contract_service(db).resend_signing_link(
            contract_id, user.company_id, user.contractor_id
        )
        return SendResponse(
            contract=ContractResponse.from_model(result.contract),
            signing_link_expires_at=result.expires_at,
            warnings=result.warnings,
        )


@router.post("/contracts/{contract_id}/void")
def void_contract(
    contract_id: str,
    payload: VoidRequest | None = None,
    authorization: str | None = Header(default=None, alias="Authorization"),
    db: Session = Depends(get_db_session),
) -> ContractResponse:
    with domain_errors():
        user = authorize(authorization)
        contract = dependencies.build_contract_service(db).void_contract(
            contract_id, user.company_id, user.contractor_id, reason=payload.reason if payload else None
        )
        return ContractResponse.from_model(contract)


@router.post("/contracts/{contract_id}/contractor-sign", status_code=status.HTTP_201_CREATED)
def contractor_sign(
    contract_id: str,
    payload: ContractorSignRequest,
    request: Request,
    authorization: str | None = Header(default=None, alias="Authorization"),
    user_agent: str | None = Header(default=None, alias="User-Agent"),
    forwarded_for: str | None = Header(default=None, alias="X-Forwarded-For"),
    db: Session = Depends(get_db_session),
) -> APIEnvelope:
    with domain_errors():
        user = authorize(authorization)
        service = dependencies.build_contract_service(db)
        contractor = service.store.get_contractor(user.contractor_id)
        result = service.contractor_sign(
            contract_id,
            user.company_id,
            contractor,
            SignaturePayload(
                signer_name=payload.full_name,
                signature_data_url=payload.signature_data_url,
                contract_hash=payload.contract_hash,
            ),
            ip_address=client_ip(forwarded_for, request.client.host if request.client else None),
            user_agent=user_agent,
        )
        return APIEnvelope(message="Contract signed.", warnings=result.warnings)


@router.post("/contracts/{contract_id}/finalize")
def finalize_contract(
    contract_id: str,
    authorization: str | None = Header(default=None, alias="Authorization"),
    db: Session = Depends(get_db_session),
) -> FinalizeResponse:
    with domain_errors():
        user = authorize(authorization)
        result = dependencies.build_finalization_service(db).finalize(
            contract_id, company_id=user.company_id, actor_type=ActorType.CONTRACTOR, actor_id=user.contractor_id
        )
        return FinalizeResponse(
            contract=ContractResponse.from_model(result.contract),
            pdf_url=result.pdf_url,
            finalized=result.finalized,
            warnings=result.warnings,
        )


@router.get("/contracts/{contract_id}/events")
def list_events(
    contract_id: str,
    authorization: str | None = Header(default=None, alias="Authorization"),
    db: Session = Depends(get_db_session),
) -> list[ContractEventResponse]:
    with domain_errors():
        user = authorize(authorization)
        events = dependencies.build_contract_service(db).list_events(contract_id, user.company_id)
        return [ContractEventResponse.model_validate(event) for event in events]


@router.get("/contracts/{contract_id}/payments")
def list_payments(
    contract_id: str,
    authorization: str | None = Header(default=None, alias="Authorization"),
    db: Session = Depends(get_db_session),
) -> list[PaymentResponse]:
    with domain_errors():
        user = authorize(authorization)
        payments = dependencies.build_payment_service(db).list_payments(contract_id, user.company_id)
        return [PaymentResponse.from_model(payment) for payment in payments]
