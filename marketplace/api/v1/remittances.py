"""
Remittance lifecycle API endpoints.

Covers remittance type administration, quotes, recipients, the remittance
lifecycle and the bank-transfer sub-ledger. Every response carries the
delivery deadline alert computed at request time.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, status

from marketplace.api.deps import CurrentActor, RemittanceEngine
from marketplace.core.logging import get_logger
from marketplace.database.models import Remittance
from marketplace.schemas.common import (
    NotesRequest,
    OptionalReasonRequest,
    ProofRequest,
    ReasonRequest,
)
from marketplace.schemas.remittances import (
    BankTransferCreateRequest,
    BankTransferResponse,
    BankTransferStatusRequest,
    ConfirmDeliveryRequest,
    DeliveryAlertResponse,
    QuoteRequest,
    QuoteResponse,
    RecipientCreateRequest,
    RecipientResponse,
    RemittanceAlertResponse,
    RemittanceCreateRequest,
    RemittanceListResponse,
    RemittanceResponse,
    RemittanceTypeCreateRequest,
    RemittanceTypeResponse,
    RemittanceTypeUpdateRequest,
)
from marketplace.services.remittances.alerts import DeliveryAlert, delivery_alert
from marketplace.services.remittances.enums import RemittanceStatus
from marketplace.services.remittances.service import (
    BankAccountInput,
    RecipientInput,
    RemittanceFilters,
    RemittanceTypeInput,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/remittances", tags=["remittances"])


def _alert(alert: DeliveryAlert) -> DeliveryAlertResponse:
    return DeliveryAlertResponse(
        level=alert.level,
        message=alert.message,
        hours_remaining=alert.hours_remaining,
    )


def _response(remittance: Remittance) -> RemittanceResponse:
    response = RemittanceResponse.model_validate(remittance)
    return response.model_copy(
        update={"delivery_alert": _alert(delivery_alert(remittance))}
    )


# ============================================================================
# Types and quotes
# ============================================================================


@router.get("/types", response_model=list[RemittanceTypeResponse])
async def list_types(
    actor: CurrentActor,
    engine: RemittanceEngine,
    include_inactive: bool = Query(False, description="Admin-only"),
) -> list[RemittanceTypeResponse]:
    active_only = not (include_inactive and actor.is_admin)
    types = await engine.list_types(active_only=active_only)
    return [RemittanceTypeResponse.model_validate(t) for t in types]


@router.post(
    "/types",
    response_model=RemittanceTypeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create remittance type",
)
async def create_type(
    request: RemittanceTypeCreateRequest,
    actor: CurrentActor,
    engine: RemittanceEngine,
) -> RemittanceTypeResponse:
    remittance_type = await engine.create_type(
        actor, RemittanceTypeInput(**request.model_dump())
    )
    return RemittanceTypeResponse.model_validate(remittance_type)


@router.patch("/types/{type_id}", response_model=RemittanceTypeResponse)
async def update_type(
    type_id: UUID,
    request: RemittanceTypeUpdateRequest,
    actor: CurrentActor,
    engine: RemittanceEngine,
) -> RemittanceTypeResponse:
    remittance_type = await engine.update_type(
        type_id, actor, **request.model_dump(exclude_unset=True)
    )
    return RemittanceTypeResponse.model_validate(remittance_type)


@router.delete("/types/{type_id}", response_model=RemittanceTypeResponse)
async def deactivate_type(
    type_id: UUID, actor: CurrentActor, engine: RemittanceEngine
) -> RemittanceTypeResponse:
    remittance_type = await engine.deactivate_type(type_id, actor)
    return RemittanceTypeResponse.model_validate(remittance_type)


@router.post(
    "/quote",
    response_model=QuoteResponse,
    summary="Price preview",
    description="Computes commission, total and delivery amount without saving",
)
async def quote(
    request: QuoteRequest, actor: CurrentActor, engine: RemittanceEngine
) -> QuoteResponse:
    result = await engine.calculate(request.remittance_type_id, request.amount)
    return QuoteResponse.model_validate(result)


# ============================================================================
# Recipients
# ============================================================================


@router.post(
    "/recipients",
    response_model=RecipientResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_recipient(
    request: RecipientCreateRequest,
    actor: CurrentActor,
    engine: RemittanceEngine,
) -> RecipientResponse:
    recipient = await engine.create_recipient(
        actor,
        RecipientInput(
            full_name=request.full_name,
            phone=request.phone,
            address=request.address,
            city=request.city,
            linked_user_id=request.linked_user_id,
            bank_accounts=[
                BankAccountInput(**account.model_dump())
                for account in request.bank_accounts
            ],
        ),
    )
    return RecipientResponse.model_validate(recipient)


@router.get("/recipients", response_model=list[RecipientResponse])
async def list_recipients(
    actor: CurrentActor, engine: RemittanceEngine
) -> list[RecipientResponse]:
    recipients = await engine.list_recipients(actor)
    return [RecipientResponse.model_validate(r) for r in recipients]


# ============================================================================
# Alerts
# ============================================================================


@router.get(
    "/alerts",
    response_model=list[RemittanceAlertResponse],
    summary="Remittances close to or past their delivery deadline",
)
async def delivery_alerts(
    actor: CurrentActor, engine: RemittanceEngine
) -> list[RemittanceAlertResponse]:
    flagged = await engine.remittances_needing_alert(actor)
    return [
        RemittanceAlertResponse(remittance=_response(r), alert=_alert(a))
        for r, a in flagged
    ]


# ============================================================================
# Remittances
# ============================================================================


@router.post(
    "/",
    response_model=RemittanceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create remittance",
)
async def create_remittance(
    request: RemittanceCreateRequest,
    actor: CurrentActor,
    engine: RemittanceEngine,
) -> RemittanceResponse:
    logger.info(
        "Creating remittance",
        user_id=str(actor.user_id),
        remittance_type_id=str(request.remittance_type_id),
    )
    remittance = await engine.create(
        actor,
        type_id=request.remittance_type_id,
        amount=request.amount,
        recipient_id=request.recipient_id,
        delivery_method=request.delivery_method,
        bank_account_id=request.recipient_bank_account_id,
        proof_ref=request.proof_ref,
        notes=request.notes,
    )
    return _response(remittance)


@router.get("/", response_model=RemittanceListResponse)
async def list_remittances(
    actor: CurrentActor,
    engine: RemittanceEngine,
    status_filter: Optional[RemittanceStatus] = Query(None, alias="status"),
    sender_id: Optional[UUID] = Query(None, description="Admin-only filter"),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
) -> RemittanceListResponse:
    remittances, total = await engine.list_remittances(
        actor,
        RemittanceFilters(
            status=status_filter, sender_id=sender_id, skip=skip, limit=limit
        ),
    )
    return RemittanceListResponse(
        items=[_response(r) for r in remittances],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/{remittance_id}", response_model=RemittanceResponse)
async def get_remittance(
    remittance_id: UUID, actor: CurrentActor, engine: RemittanceEngine
) -> RemittanceResponse:
    return _response(await engine.get_remittance(remittance_id, actor))


@router.post("/{remittance_id}/payment-proof", response_model=RemittanceResponse)
async def upload_payment_proof(
    remittance_id: UUID,
    request: ProofRequest,
    actor: CurrentActor,
    engine: RemittanceEngine,
) -> RemittanceResponse:
    remittance = await engine.upload_payment_proof(
        remittance_id, request.proof_ref, actor
    )
    return _response(remittance)


@router.post("/{remittance_id}/payment/validate", response_model=RemittanceResponse)
async def validate_payment(
    remittance_id: UUID,
    request: NotesRequest,
    actor: CurrentActor,
    engine: RemittanceEngine,
) -> RemittanceResponse:
    remittance = await engine.validate_payment(remittance_id, actor, request.notes)
    return _response(remittance)


@router.post("/{remittance_id}/payment/reject", response_model=RemittanceResponse)
async def reject_payment(
    remittance_id: UUID,
    request: ReasonRequest,
    actor: CurrentActor,
    engine: RemittanceEngine,
) -> RemittanceResponse:
    remittance = await engine.reject_payment(remittance_id, actor, request.reason)
    return _response(remittance)


@router.post("/{remittance_id}/payment/retry", response_model=RemittanceResponse)
async def retry_payment(
    remittance_id: UUID, actor: CurrentActor, engine: RemittanceEngine
) -> RemittanceResponse:
    return _response(await engine.retry_payment(remittance_id, actor))


@router.post("/{remittance_id}/process", response_model=RemittanceResponse)
async def start_processing(
    remittance_id: UUID,
    request: NotesRequest,
    actor: CurrentActor,
    engine: RemittanceEngine,
) -> RemittanceResponse:
    remittance = await engine.start_processing(remittance_id, actor, request.notes)
    return _response(remittance)


@router.post(
    "/{remittance_id}/deliver",
    response_model=RemittanceResponse,
    summary="Confirm delivery",
    description="Admin or the linked recipient user; evidence is mandatory",
)
async def confirm_delivery(
    remittance_id: UUID,
    request: ConfirmDeliveryRequest,
    actor: CurrentActor,
    engine: RemittanceEngine,
) -> RemittanceResponse:
    remittance = await engine.confirm_delivery(
        remittance_id, actor, proof_ref=request.proof_ref, notes=request.notes
    )
    return _response(remittance)


@router.post("/{remittance_id}/complete", response_model=RemittanceResponse)
async def complete_remittance(
    remittance_id: UUID,
    request: NotesRequest,
    actor: CurrentActor,
    engine: RemittanceEngine,
) -> RemittanceResponse:
    remittance = await engine.complete(remittance_id, actor, request.notes)
    return _response(remittance)


@router.post("/{remittance_id}/cancel", response_model=RemittanceResponse)
async def cancel_remittance(
    remittance_id: UUID,
    request: OptionalReasonRequest,
    actor: CurrentActor,
    engine: RemittanceEngine,
) -> RemittanceResponse:
    remittance = await engine.cancel(remittance_id, actor, request.reason)
    return _response(remittance)


# ============================================================================
# Bank transfers
# ============================================================================


@router.post(
    "/{remittance_id}/bank-transfers",
    response_model=BankTransferResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_bank_transfer(
    remittance_id: UUID,
    request: BankTransferCreateRequest,
    actor: CurrentActor,
    engine: RemittanceEngine,
) -> BankTransferResponse:
    transfer = await engine.create_bank_transfer(
        remittance_id,
        actor,
        reference_number=request.reference_number,
        notes=request.notes,
    )
    return BankTransferResponse.model_validate(transfer)


@router.patch(
    "/bank-transfers/{transfer_id}",
    response_model=BankTransferResponse,
)
async def update_bank_transfer_status(
    transfer_id: UUID,
    request: BankTransferStatusRequest,
    actor: CurrentActor,
    engine: RemittanceEngine,
) -> BankTransferResponse:
    transfer = await engine.update_bank_transfer_status(
        transfer_id,
        actor,
        request.status,
        reference_number=request.reference_number,
        error_message=request.error_message,
        notes=request.notes,
    )
    return BankTransferResponse.model_validate(transfer)
