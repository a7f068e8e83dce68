"""
Remittance lifecycle engine.

A remittance walks a single status chain: payment proof, admin validation,
delivery preparation, delivery confirmation and completion. Quotes are
recomputed by ``calculate_quote`` at creation and stored as computed. Non-cash
remittances carry a bank-transfer sub-ledger with its own small state machine.

Every mutation runs in one unit of work, status columns change through
compare-and-set, activity entries are written for every transition, and
notifications go out after commit.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.actor import Actor
from marketplace.core.config import Settings, get_settings
from marketplace.core.exceptions import (
    DeliveryProofRequiredError,
    InvalidStateTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from marketplace.core.logging import get_logger
from marketplace.database.base import utc_now
from marketplace.database.models import (
    BankTransferRecord,
    Recipient,
    RecipientBankAccount,
    Remittance,
    RemittanceType,
)
from marketplace.services.activity.logger import ActivityLogger
from marketplace.services.lifecycle.operation import lifecycle_operation
from marketplace.services.lifecycle.transitions import validate_transition
from marketplace.services.notifications.dispatcher import (
    NotificationDispatcher,
    NullDispatcher,
)
from marketplace.services.notifications.events import LifecycleEvent
from marketplace.services.remittances.alerts import DeliveryAlert, delivery_alert
from marketplace.services.remittances.calculator import (
    RemittanceQuote,
    calculate_quote,
    to_money,
)
from marketplace.services.remittances.enums import (
    BANK_TRANSFER_TRANSITIONS,
    REMITTANCE_STATUS_TRANSITIONS,
    AlertLevel,
    BankTransferStatus,
    CommissionType,
    DeliveryMethod,
    RemittanceStatus,
)
from marketplace.services.remittances.numbering import RemittanceNumberAllocator
from marketplace.services.remittances.repository import RemittanceRepository

logger = get_logger(__name__)

ENTITY = "remittance"

# Statuses an owner may still cancel from; admins may also cancel validated ones
OWNER_CANCELLABLE = frozenset(
    {
        RemittanceStatus.PAYMENT_PENDING,
        RemittanceStatus.PAYMENT_PROOF_UPLOADED,
        RemittanceStatus.PAYMENT_REJECTED,
    }
)

TRANSFERABLE = frozenset(
    {RemittanceStatus.PAYMENT_VALIDATED, RemittanceStatus.PROCESSING}
)

AWAITING_DELIVERY = (RemittanceStatus.PAYMENT_VALIDATED, RemittanceStatus.PROCESSING)

TYPE_FIELDS = frozenset(
    {
        "name",
        "description",
        "currency_code",
        "delivery_currency",
        "exchange_rate",
        "commission_type",
        "commission_percentage",
        "commission_fixed",
        "min_amount",
        "max_amount",
        "delivery_methods",
        "max_delivery_days",
        "is_active",
    }
)


@dataclass(frozen=True)
class RemittanceTypeInput:
    """
    Admin-supplied configuration of a remittance type.

    Attributes:
        name: Unique display name
        currency_code: Currency the sender pays in
        delivery_currency: Currency the recipient receives
        exchange_rate: Delivery units per source unit, positive
        min_amount: Smallest accepted amount, positive
        delivery_methods: Allowed delivery methods, at least one
        commission_type: Fixed or percentage commission
        commission_percentage: Rate in [0, 100] for percentage commission
        commission_fixed: Amount for fixed commission
        max_amount: Largest accepted amount, None when unbounded
        max_delivery_days: Days after validation the payout is due
        description: Optional free text
    """

    name: str
    currency_code: str
    delivery_currency: str
    exchange_rate: Decimal
    min_amount: Decimal
    delivery_methods: Sequence[DeliveryMethod]
    commission_type: CommissionType = CommissionType.PERCENTAGE
    commission_percentage: Decimal = Decimal("0")
    commission_fixed: Decimal = Decimal("0")
    max_amount: Optional[Decimal] = None
    max_delivery_days: int = 3
    description: Optional[str] = None


@dataclass(frozen=True)
class BankAccountInput:
    bank_name: str
    account_number: str
    account_holder: str
    account_type: Optional[str] = None
    is_default: bool = False


@dataclass(frozen=True)
class RecipientInput:
    full_name: str
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    linked_user_id: Optional[uuid.UUID] = None
    bank_accounts: Sequence[BankAccountInput] = field(default_factory=tuple)


@dataclass(frozen=True)
class RemittanceFilters:
    status: Optional[RemittanceStatus] = None
    sender_id: Optional[uuid.UUID] = None
    skip: int = 0
    limit: int = 20


class RemittanceLifecycleEngine:
    """
    Engine for every remittance state change.

    Args:
        session: Session the engine works in; the engine commits it
        notifier: Receiver of lifecycle events after commit
        clock: Source of the current time
        number_allocator: Remittance number generator
        settings: Application settings
    """

    def __init__(
        self,
        session: AsyncSession,
        notifier: Optional[NotificationDispatcher] = None,
        clock: Callable[[], datetime] = utc_now,
        number_allocator: Optional[RemittanceNumberAllocator] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.session = session
        self.repository = RemittanceRepository(session)
        self.activity = ActivityLogger(session)
        self.notifier = notifier or NullDispatcher()
        self.clock = clock
        self.numbers = number_allocator or RemittanceNumberAllocator(
            self.repository.latest_number,
            self.repository.number_exists,
            max_attempts=settings.remittance_number_max_attempts,
            clock=clock,
        )

    # ============================================================================
    # Remittance types
    # ============================================================================

    async def create_type(
        self, admin: Actor, data: RemittanceTypeInput
    ) -> RemittanceType:
        """
        Create a remittance type.

        Raises:
            PermissionDeniedError: If the actor is not an admin
            ValidationError: If the configuration is inconsistent or the
                name is taken
        """
        admin.require_admin("create_type")

        async with lifecycle_operation(self.session, "create_type", name=data.name):
            values = self._validate_type_values(
                {
                    "name": data.name,
                    "description": data.description,
                    "currency_code": data.currency_code,
                    "delivery_currency": data.delivery_currency,
                    "exchange_rate": data.exchange_rate,
                    "commission_type": data.commission_type,
                    "commission_percentage": data.commission_percentage,
                    "commission_fixed": data.commission_fixed,
                    "min_amount": data.min_amount,
                    "max_amount": data.max_amount,
                    "delivery_methods": list(data.delivery_methods),
                    "max_delivery_days": data.max_delivery_days,
                    "is_active": True,
                }
            )
            if await self.repository.type_name_exists(values["name"]):
                raise ValidationError(
                    "A remittance type with this name already exists",
                    name=values["name"],
                )

            remittance_type = RemittanceType(
                id=uuid.uuid4(),
                created_by=admin.user_id,
                updated_by=admin.user_id,
                **values,
            )
            self.repository.add(remittance_type)
            await self.session.flush()

            await self.activity.record(
                entity_type="remittance_type",
                entity_id=remittance_type.id,
                action="remittance_type_created",
                actor=admin,
                description=f"Remittance type '{remittance_type.name}' created",
            )

        logger.info(
            "Remittance type created",
            remittance_type_id=str(remittance_type.id),
            name=remittance_type.name,
        )
        return remittance_type

    async def update_type(
        self, type_id: uuid.UUID, admin: Actor, **changes: Any
    ) -> RemittanceType:
        """
        Change fields of a remittance type.

        The merged configuration is validated as a whole, so lowering
        ``max_amount`` below the current ``min_amount`` is rejected.
        Existing remittances keep the quote they were created with.

        Raises:
            PermissionDeniedError: If the actor is not an admin
            ValidationError: On unknown fields or an inconsistent result
            NotFoundError: If the type does not exist
        """
        admin.require_admin("update_type")

        unknown = set(changes) - TYPE_FIELDS
        if unknown:
            raise ValidationError(
                "Unknown remittance type fields", fields=sorted(unknown)
            )

        async with lifecycle_operation(
            self.session, "update_type", remittance_type_id=str(type_id)
        ):
            remittance_type = await self._load_type(type_id)
            current = {name: getattr(remittance_type, name) for name in TYPE_FIELDS}
            values = self._validate_type_values({**current, **changes})

            if values["name"] != remittance_type.name and (
                await self.repository.type_name_exists(
                    values["name"], exclude_id=type_id
                )
            ):
                raise ValidationError(
                    "A remittance type with this name already exists",
                    name=values["name"],
                )

            for name in changes:
                setattr(remittance_type, name, values[name])
            remittance_type.updated_by = admin.user_id
            remittance_type.updated_at = self.clock()

            await self.activity.record(
                entity_type="remittance_type",
                entity_id=remittance_type.id,
                action="remittance_type_updated",
                actor=admin,
                description=f"Remittance type '{remittance_type.name}' updated",
                details={"fields": sorted(changes)},
            )

        return remittance_type

    async def deactivate_type(self, type_id: uuid.UUID, admin: Actor) -> RemittanceType:
        """Stop offering a type; existing remittances are unaffected."""
        return await self.update_type(type_id, admin, is_active=False)

    async def list_types(self, active_only: bool = True) -> Sequence[RemittanceType]:
        return await self.repository.list_types(active_only=active_only)

    # ============================================================================
    # Quote and creation
    # ============================================================================

    async def calculate(self, type_id: uuid.UUID, amount: Any) -> RemittanceQuote:
        """
        Price preview for an amount.

        Reads the type and delegates to ``calculate_quote``; nothing is
        written.

        Raises:
            NotFoundError: If the type does not exist
            ValidationError: If the type is inactive or the amount is out
                of bounds
        """
        remittance_type = await self._load_type(type_id)
        return calculate_quote(remittance_type, amount)

    async def create_recipient(self, sender: Actor, data: RecipientInput) -> Recipient:
        """Register a recipient, with optional bank accounts, for a sender."""
        async with lifecycle_operation(
            self.session, "create_recipient", sender_id=str(sender.user_id)
        ):
            full_name = self._require_text(data.full_name, "full_name")
            recipient = Recipient(
                id=uuid.uuid4(),
                sender_id=sender.user_id,
                linked_user_id=data.linked_user_id,
                full_name=full_name,
                phone=data.phone,
                address=data.address,
                city=data.city,
                bank_accounts=[],
            )
            for account in data.bank_accounts:
                recipient.bank_accounts.append(
                    RecipientBankAccount(
                        id=uuid.uuid4(),
                        bank_name=self._require_text(account.bank_name, "bank_name"),
                        account_number=self._require_text(
                            account.account_number, "account_number"
                        ),
                        account_holder=self._require_text(
                            account.account_holder, "account_holder"
                        ),
                        account_type=account.account_type,
                        is_default=account.is_default,
                    )
                )
            self.repository.add(recipient)
            await self.session.flush()
        return recipient

    async def list_recipients(self, sender: Actor) -> Sequence[Recipient]:
        return await self.repository.list_recipients(sender.user_id)

    async def create(
        self,
        sender: Actor,
        type_id: uuid.UUID,
        amount: Any,
        recipient_id: uuid.UUID,
        delivery_method: DeliveryMethod,
        bank_account_id: Optional[uuid.UUID] = None,
        proof_ref: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Remittance:
        """
        Create a remittance from a freshly computed quote.

        Non-cash delivery needs a bank account of the recipient; when none is
        given the recipient's default account is used. A proof reference
        supplied here moves the remittance straight to
        PAYMENT_PROOF_UPLOADED.

        Raises:
            NotFoundError: Unknown type, recipient or bank account
            PermissionDeniedError: Recipient belongs to another sender
            ValidationError: Amount out of bounds, delivery method not
                offered by the type, or missing bank account
        """
        async with lifecycle_operation(
            self.session, "create_remittance", sender_id=str(sender.user_id)
        ):
            delivery_method = DeliveryMethod(delivery_method)
            remittance_type = await self._load_type(type_id)
            quote = calculate_quote(remittance_type, amount)

            if not remittance_type.allows(delivery_method):
                raise ValidationError(
                    "Delivery method is not offered by this remittance type",
                    delivery_method=delivery_method,
                    allowed=remittance_type.delivery_methods,
                )

            recipient = await self.repository.get_recipient(recipient_id)
            if recipient is None:
                raise NotFoundError("Recipient", recipient_id)
            if recipient.sender_id != sender.user_id:
                raise PermissionDeniedError(
                    "Recipient belongs to another sender",
                    recipient_id=str(recipient_id),
                )

            account = self._resolve_bank_account(
                recipient, delivery_method, bank_account_id
            )

            proof_ref = (proof_ref or "").strip() or None
            now = self.clock()
            status = (
                RemittanceStatus.PAYMENT_PROOF_UPLOADED
                if proof_ref
                else RemittanceStatus.PAYMENT_PENDING
            )

            remittance = Remittance(
                id=uuid.uuid4(),
                sender_id=sender.user_id,
                remittance_type=remittance_type,
                recipient=recipient,
                bank_transfers=[],
                recipient_id=recipient.id,
                recipient_bank_account_id=account.id if account else None,
                amount=quote.amount,
                commission=quote.commission,
                total_amount=quote.total_charged,
                exchange_rate=quote.exchange_rate,
                delivery_amount=quote.delivery_amount,
                currency_code=quote.currency_code,
                delivery_currency=quote.delivery_currency,
                delivery_method=delivery_method,
                status=status,
                notes=notes,
                payment_proof_ref=proof_ref,
                payment_proof_uploaded_at=now if proof_ref else None,
                created_by=sender.user_id,
                updated_by=sender.user_id,
                created_at=now,
                updated_at=now,
            )
            async def store(number: str) -> bool:
                remittance.remittance_number = number
                return await self.repository.insert(remittance)

            await self.numbers.claim(store)

            await self._log(
                remittance,
                sender,
                "remittance_created",
                f"Remittance {remittance.remittance_number} created for "
                f"{remittance.total_amount} {remittance.currency_code}",
                None,
                status,
            )

        logger.info(
            "Remittance created",
            remittance_id=str(remittance.id),
            remittance_number=remittance.remittance_number,
            total_amount=str(remittance.total_amount),
        )
        return remittance

    # ============================================================================
    # Payment phase
    # ============================================================================

    async def upload_payment_proof(
        self, remittance_id: uuid.UUID, proof_ref: str, actor: Actor
    ) -> Remittance:
        async with lifecycle_operation(
            self.session, "upload_payment_proof", remittance_id=str(remittance_id)
        ):
            proof_ref = self._require_text(proof_ref, "proof_ref")
            remittance = await self._load(remittance_id)
            actor.require_owner_or_admin(remittance.sender_id, "upload_payment_proof")

            await self._transition(
                remittance,
                actor,
                RemittanceStatus.PAYMENT_PROOF_UPLOADED,
                "payment_proof_uploaded",
                f"Payment proof uploaded for remittance {remittance.remittance_number}",
                payment_proof_ref=proof_ref,
                payment_proof_uploaded_at=self.clock(),
            )
        return remittance

    async def validate_payment(
        self,
        remittance_id: uuid.UUID,
        admin: Actor,
        notes: Optional[str] = None,
    ) -> Remittance:
        """
        Accept the payment proof and start the delivery deadline.

        ``max_delivery_date`` is the validation time plus the type's
        ``max_delivery_days``.

        Raises:
            PermissionDeniedError: If the actor is not an admin
            InvalidStateTransitionError: If no proof is awaiting validation
        """
        admin.require_admin("validate_payment")

        async with lifecycle_operation(
            self.session, "validate_payment", remittance_id=str(remittance_id)
        ):
            remittance = await self._load(remittance_id)
            now = self.clock()
            deadline = now + timedelta(
                days=remittance.remittance_type.max_delivery_days
            )
            await self._transition(
                remittance,
                admin,
                RemittanceStatus.PAYMENT_VALIDATED,
                "payment_validated",
                f"Payment for remittance {remittance.remittance_number} validated",
                details={"notes": notes} if notes else None,
                payment_validated_by=admin.user_id,
                payment_validated_at=now,
                max_delivery_date=deadline,
            )

        self._notify(
            remittance,
            "payment_validated",
            admin,
            max_delivery_date=deadline.isoformat(),
        )
        return remittance

    async def reject_payment(
        self, remittance_id: uuid.UUID, admin: Actor, reason: str
    ) -> Remittance:
        admin.require_admin("reject_payment")

        async with lifecycle_operation(
            self.session, "reject_payment", remittance_id=str(remittance_id)
        ):
            reason = self._require_text(reason, "reason")
            remittance = await self._load(remittance_id)
            await self._transition(
                remittance,
                admin,
                RemittanceStatus.PAYMENT_REJECTED,
                "payment_rejected",
                f"Payment for remittance {remittance.remittance_number} "
                f"rejected: {reason}",
                payment_rejected_by=admin.user_id,
                payment_rejected_at=self.clock(),
                payment_rejection_reason=reason,
            )

        self._notify(remittance, "payment_rejected", admin, reason=reason)
        return remittance

    async def retry_payment(self, remittance_id: uuid.UUID, actor: Actor) -> Remittance:
        """Return a rejected remittance to PAYMENT_PENDING for a new proof."""
        async with lifecycle_operation(
            self.session, "retry_payment", remittance_id=str(remittance_id)
        ):
            remittance = await self._load(remittance_id)
            actor.require_owner_or_admin(remittance.sender_id, "retry_payment")
            await self._transition(
                remittance,
                actor,
                RemittanceStatus.PAYMENT_PENDING,
                "payment_retried",
                f"Remittance {remittance.remittance_number} reopened for a new "
                "payment proof",
                payment_proof_ref=None,
                payment_proof_uploaded_at=None,
                payment_rejected_by=None,
                payment_rejected_at=None,
                payment_rejection_reason=None,
            )
        return remittance

    # ============================================================================
    # Delivery phase
    # ============================================================================

    async def start_processing(
        self,
        remittance_id: uuid.UUID,
        admin: Actor,
        notes: Optional[str] = None,
    ) -> Remittance:
        admin.require_admin("start_processing")

        async with lifecycle_operation(
            self.session, "start_processing", remittance_id=str(remittance_id)
        ):
            remittance = await self._load(remittance_id)
            await self._transition(
                remittance,
                admin,
                RemittanceStatus.PROCESSING,
                "processing_started",
                f"Remittance {remittance.remittance_number} is being prepared "
                "for delivery",
                details={"notes": notes} if notes else None,
                processing_started_by=admin.user_id,
                processing_started_at=self.clock(),
            )
        return remittance

    async def confirm_delivery(
        self,
        remittance_id: uuid.UUID,
        actor: Actor,
        proof_ref: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Remittance:
        """
        Confirm the recipient received the money.

        Allowed for admins and for the recipient-side user linked to the
        remittance's recipient. Evidence is mandatory: either ``proof_ref``
        or a proof already stored on the remittance.

        Raises:
            PermissionDeniedError: If the actor is neither admin nor the
                linked recipient user
            InvalidStateTransitionError: If the remittance is not PROCESSING
            DeliveryProofRequiredError: If no evidence exists or is supplied
        """
        async with lifecycle_operation(
            self.session, "confirm_delivery", remittance_id=str(remittance_id)
        ):
            remittance = await self._load(remittance_id)
            linked_user_id = (
                remittance.recipient.linked_user_id if remittance.recipient else None
            )
            if not actor.is_admin and (
                linked_user_id is None or linked_user_id != actor.user_id
            ):
                raise PermissionDeniedError(
                    "Only an administrator or the recipient can confirm delivery",
                    operation="confirm_delivery",
                    user_id=str(actor.user_id),
                )

            validate_transition(
                remittance.status,
                RemittanceStatus.DELIVERED,
                REMITTANCE_STATUS_TRANSITIONS,
                remittance_id=str(remittance.id),
            )

            proof = (proof_ref or "").strip() or remittance.delivery_proof_ref
            if not proof:
                raise DeliveryProofRequiredError(remittance.id)

            await self._transition(
                remittance,
                actor,
                RemittanceStatus.DELIVERED,
                "delivery_confirmed",
                f"Delivery of remittance {remittance.remittance_number} confirmed",
                delivery_proof_ref=proof,
                delivery_notes=notes or remittance.delivery_notes,
                delivered_by=actor.user_id,
                delivered_at=self.clock(),
            )

        self._notify(remittance, "delivery_confirmed", actor)
        return remittance

    async def complete(
        self,
        remittance_id: uuid.UUID,
        admin: Actor,
        notes: Optional[str] = None,
    ) -> Remittance:
        admin.require_admin("complete")

        async with lifecycle_operation(
            self.session, "complete", remittance_id=str(remittance_id)
        ):
            remittance = await self._load(remittance_id)
            await self._transition(
                remittance,
                admin,
                RemittanceStatus.COMPLETED,
                "remittance_completed",
                f"Remittance {remittance.remittance_number} completed",
                details={"notes": notes} if notes else None,
                completed_by=admin.user_id,
                completed_at=self.clock(),
            )
        return remittance

    async def cancel(
        self,
        remittance_id: uuid.UUID,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> Remittance:
        """
        Cancel a remittance before delivery preparation starts.

        Owners may cancel until the payment is validated; admins may also
        cancel a validated remittance.

        Raises:
            PermissionDeniedError: If the actor is neither owner nor admin
            InvalidStateTransitionError: If the remittance is past the
                cancellable statuses
        """
        async with lifecycle_operation(
            self.session, "cancel", remittance_id=str(remittance_id)
        ):
            remittance = await self._load(remittance_id)
            actor.require_owner_or_admin(remittance.sender_id, "cancel")

            if not actor.is_admin and remittance.status not in OWNER_CANCELLABLE:
                raise InvalidStateTransitionError(
                    remittance.status,
                    RemittanceStatus.CANCELLED,
                    (),
                    remittance_id=str(remittance.id),
                    reason="admin_required",
                )

            description = f"Remittance {remittance.remittance_number} cancelled"
            if reason:
                description = f"{description}: {reason}"
            await self._transition(
                remittance,
                actor,
                RemittanceStatus.CANCELLED,
                "remittance_cancelled",
                description,
                cancelled_by=actor.user_id,
                cancelled_at=self.clock(),
                cancellation_reason=reason,
            )

        self._notify(remittance, "remittance_cancelled", actor, reason=reason)
        return remittance

    # ============================================================================
    # Bank transfers
    # ============================================================================

    async def create_bank_transfer(
        self,
        remittance_id: uuid.UUID,
        admin: Actor,
        reference_number: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> BankTransferRecord:
        """
        Open a new payout attempt for a non-cash remittance.

        A new attempt is only allowed when every earlier attempt failed.

        Raises:
            PermissionDeniedError: If the actor is not an admin
            ValidationError: Cash remittance, missing bank account, status
                other than PAYMENT_VALIDATED or PROCESSING, or an attempt
                still open or already completed
        """
        admin.require_admin("create_bank_transfer")

        async with lifecycle_operation(
            self.session, "create_bank_transfer", remittance_id=str(remittance_id)
        ):
            remittance = await self._load(remittance_id)

            if not remittance.delivery_method.requires_bank_account:
                raise ValidationError(
                    "Cash remittances have no bank transfer",
                    remittance_id=str(remittance.id),
                )
            if remittance.recipient_bank_account_id is None:
                raise ValidationError(
                    "Remittance has no recipient bank account",
                    remittance_id=str(remittance.id),
                )
            if remittance.status not in TRANSFERABLE:
                raise ValidationError(
                    "Bank transfers need a validated or processing remittance",
                    remittance_id=str(remittance.id),
                    status=remittance.status,
                )

            open_attempts = [
                t
                for t in remittance.bank_transfers
                if t.status != BankTransferStatus.FAILED
            ]
            if open_attempts:
                raise ValidationError(
                    "A bank transfer for this remittance is open or completed",
                    remittance_id=str(remittance.id),
                    transfer_id=str(open_attempts[0].id),
                )

            attempt = await self.repository.next_transfer_attempt(remittance.id)
            transfer = BankTransferRecord(
                id=uuid.uuid4(),
                remittance_id=remittance.id,
                recipient_bank_account_id=remittance.recipient_bank_account_id,
                attempt=attempt,
                status=BankTransferStatus.PENDING,
                reference_number=reference_number,
                amount_transferred=to_money(remittance.delivery_amount),
                processed_by=admin.user_id,
                processed_at=self.clock(),
                notes=notes,
            )
            self.repository.add(transfer)
            await self.session.flush()

            await self.activity.record(
                entity_type="bank_transfer",
                entity_id=transfer.id,
                action="bank_transfer_created",
                actor=admin,
                to_state=BankTransferStatus.PENDING,
                description=(
                    f"Bank transfer attempt {attempt} opened for remittance "
                    f"{remittance.remittance_number}"
                ),
                details={"remittance_id": str(remittance.id)},
            )

        return transfer

    async def update_bank_transfer_status(
        self,
        transfer_id: uuid.UUID,
        admin: Actor,
        status: BankTransferStatus,
        reference_number: Optional[str] = None,
        error_message: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> BankTransferRecord:
        """
        Move a bank transfer along pending -> processing -> completed|failed.

        Raises:
            PermissionDeniedError: If the actor is not an admin
            NotFoundError: If the transfer does not exist
            InvalidStateTransitionError: If the move is not allowed or a
                concurrent update won
        """
        admin.require_admin("update_bank_transfer_status")
        status = BankTransferStatus(status)

        async with lifecycle_operation(
            self.session,
            "update_bank_transfer_status",
            transfer_id=str(transfer_id),
            target=status.value,
        ):
            transfer = await self.repository.get_transfer(transfer_id)
            if transfer is None:
                raise NotFoundError("BankTransferRecord", transfer_id)

            previous = transfer.status
            validate_transition(
                previous,
                status,
                BANK_TRANSFER_TRANSITIONS,
                transfer_id=str(transfer.id),
            )

            values: dict[str, Any] = {
                "status": status,
                "processed_by": admin.user_id,
                "processed_at": self.clock(),
            }
            if reference_number:
                values["reference_number"] = reference_number
            if notes:
                values["notes"] = notes
            if status == BankTransferStatus.FAILED:
                values["error_message"] = (
                    error_message or "Transfer failed"
                ).strip()

            applied = await self.repository.transfer_compare_and_set(
                transfer, previous, **values
            )
            if not applied:
                await self.repository.refresh(transfer)
                validate_transition(
                    transfer.status,
                    status,
                    BANK_TRANSFER_TRANSITIONS,
                    transfer_id=str(transfer.id),
                )
                raise InvalidStateTransitionError(
                    transfer.status,
                    status,
                    transfer_id=str(transfer.id),
                    reason="concurrent_update",
                )

            await self.activity.record(
                entity_type="bank_transfer",
                entity_id=transfer.id,
                action="bank_transfer_status_changed",
                actor=admin,
                from_state=previous,
                to_state=status,
                description=f"Bank transfer attempt {transfer.attempt} {status.value}",
                details={
                    "remittance_id": str(transfer.remittance_id),
                    "error_message": values.get("error_message"),
                },
            )

        return transfer

    # ============================================================================
    # Reads
    # ============================================================================

    async def get_remittance(
        self, remittance_id: uuid.UUID, actor: Actor
    ) -> Remittance:
        """Visible to the sender, the linked recipient user and admins."""
        remittance = await self._load(remittance_id)
        linked_user_id = (
            remittance.recipient.linked_user_id if remittance.recipient else None
        )
        if linked_user_id is not None and linked_user_id == actor.user_id:
            return remittance
        actor.require_owner_or_admin(remittance.sender_id, "get_remittance")
        return remittance

    async def list_remittances(
        self, actor: Actor, filters: Optional[RemittanceFilters] = None
    ) -> tuple[Sequence[Remittance], int]:
        """List remittances; non-admins only ever see their own."""
        filters = filters or RemittanceFilters()
        sender_id = filters.sender_id if actor.is_admin else actor.user_id
        return await self.repository.list_remittances(
            sender_id=sender_id,
            status=filters.status,
            skip=filters.skip,
            limit=filters.limit,
        )

    async def remittances_needing_alert(
        self, admin: Actor, now: Optional[datetime] = None
    ) -> list[tuple[Remittance, DeliveryAlert]]:
        """
        Undelivered remittances whose deadline is close or past.

        Returns:
            (remittance, alert) pairs at ``warning`` or ``error`` level,
            most urgent first
        """
        admin.require_admin("remittances_needing_alert")
        now = now or self.clock()

        remittances = await self.repository.list_awaiting_delivery(AWAITING_DELIVERY)
        flagged = []
        for remittance in remittances:
            alert = delivery_alert(remittance, now)
            if alert.level in (AlertLevel.WARNING, AlertLevel.ERROR):
                flagged.append((remittance, alert))

        flagged.sort(key=lambda pair: pair[1].hours_remaining or 0)
        return flagged

    # ============================================================================
    # Internals
    # ============================================================================

    async def _load(self, remittance_id: uuid.UUID) -> Remittance:
        remittance = await self.repository.get_by_id(remittance_id)
        if remittance is None:
            raise NotFoundError("Remittance", remittance_id)
        return remittance

    async def _load_type(self, type_id: uuid.UUID) -> RemittanceType:
        remittance_type = await self.repository.get_type(type_id)
        if remittance_type is None:
            raise NotFoundError("RemittanceType", type_id)
        return remittance_type

    async def _transition(
        self,
        remittance: Remittance,
        actor: Actor,
        target: RemittanceStatus,
        action: str,
        description: str,
        details: Optional[dict[str, Any]] = None,
        **values: Any,
    ) -> None:
        previous = remittance.status
        validate_transition(
            previous,
            target,
            REMITTANCE_STATUS_TRANSITIONS,
            remittance_id=str(remittance.id),
        )

        applied = await self.repository.compare_and_set(
            remittance,
            previous,
            status=target,
            updated_by=actor.user_id,
            **values,
        )
        if not applied:
            # Lost the race: report against the status that is stored now
            await self.repository.refresh(remittance)
            validate_transition(
                remittance.status,
                target,
                REMITTANCE_STATUS_TRANSITIONS,
                remittance_id=str(remittance.id),
            )
            raise InvalidStateTransitionError(
                remittance.status,
                target,
                remittance_id=str(remittance.id),
                reason="concurrent_update",
            )

        await self._log(
            remittance,
            actor,
            action,
            description,
            previous,
            target,
            details,
        )

    async def _log(
        self,
        remittance: Remittance,
        actor: Actor,
        action: str,
        description: str,
        from_state: Any,
        to_state: Any,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        await self.activity.record(
            entity_type=ENTITY,
            entity_id=remittance.id,
            action=action,
            actor=actor,
            description=description,
            from_state=from_state,
            to_state=to_state,
            details={
                "remittance_number": remittance.remittance_number,
                **(details or {}),
            },
        )

    def _notify(
        self,
        remittance: Remittance,
        transition: str,
        actor: Actor,
        **payload: Any,
    ) -> None:
        self.notifier.dispatch(
            LifecycleEvent(
                entity_type=ENTITY,
                entity_id=remittance.id,
                transition=transition,
                actor_identity=actor.display_name,
                recipient_user_id=remittance.sender_id,
                payload={
                    "remittance_number": remittance.remittance_number,
                    "total_amount": str(remittance.total_amount),
                    "currency_code": remittance.currency_code,
                    **{k: v for k, v in payload.items() if v is not None},
                },
            )
        )

    @staticmethod
    def _resolve_bank_account(
        recipient: Recipient,
        delivery_method: DeliveryMethod,
        bank_account_id: Optional[uuid.UUID],
    ) -> Optional[RecipientBankAccount]:
        if not delivery_method.requires_bank_account:
            return None

        accounts = {account.id: account for account in recipient.bank_accounts}
        if bank_account_id is not None:
            account = accounts.get(bank_account_id)
            if account is None:
                raise ValidationError(
                    "Bank account does not belong to the recipient",
                    bank_account_id=str(bank_account_id),
                    recipient_id=str(recipient.id),
                )
            return account

        for account in recipient.bank_accounts:
            if account.is_default:
                return account
        raise ValidationError(
            "A recipient bank account is required for this delivery method",
            delivery_method=delivery_method,
            recipient_id=str(recipient.id),
        )

    @classmethod
    def _validate_type_values(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Normalize and check a complete remittance type configuration."""
        values = dict(values)
        values["name"] = cls._require_text(values.get("name"), "name")
        for code_field in ("currency_code", "delivery_currency"):
            code = (values.get(code_field) or "").strip().upper()
            if len(code) != 3 or not code.isalpha():
                raise ValidationError(
                    "Currency must be a 3-letter code", field=code_field
                )
            values[code_field] = code

        try:
            exchange_rate = Decimal(values["exchange_rate"])
            min_amount = Decimal(values["min_amount"])
            max_amount = (
                Decimal(values["max_amount"])
                if values.get("max_amount") is not None
                else None
            )
            percentage = Decimal(values.get("commission_percentage") or 0)
            fixed = Decimal(values.get("commission_fixed") or 0)
        except (InvalidOperation, TypeError, ValueError) as e:
            raise ValidationError("Remittance type amounts must be numbers") from e

        if exchange_rate <= 0:
            raise ValidationError("Exchange rate must be positive")
        if min_amount <= 0:
            raise ValidationError("Minimum amount must be positive")
        if max_amount is not None and max_amount < min_amount:
            raise ValidationError(
                "Maximum amount cannot be below the minimum amount",
                min_amount=min_amount,
                max_amount=max_amount,
            )
        if not Decimal(0) <= percentage <= Decimal(100):
            raise ValidationError("Commission percentage must be between 0 and 100")
        if fixed < 0:
            raise ValidationError("Fixed commission cannot be negative")

        try:
            methods = [DeliveryMethod(m) for m in values.get("delivery_methods") or []]
        except ValueError as e:
            raise ValidationError("Unknown delivery method") from e
        if not methods:
            raise ValidationError("At least one delivery method is required")

        days = values.get("max_delivery_days")
        if not isinstance(days, int) or days <= 0:
            raise ValidationError(
                "Maximum delivery days must be a positive integer",
                max_delivery_days=days,
            )

        values.update(
            exchange_rate=exchange_rate,
            min_amount=to_money(min_amount),
            max_amount=to_money(max_amount) if max_amount is not None else None,
            commission_type=CommissionType(values.get("commission_type")),
            commission_percentage=percentage,
            commission_fixed=to_money(fixed),
            delivery_methods=[m.value for m in dict.fromkeys(methods)],
            is_active=bool(values.get("is_active", True)),
        )
        return values

    @staticmethod
    def _require_text(value: Optional[str], field: str) -> str:
        text = (value or "").strip()
        if not text:
            raise ValidationError(f"{field} is required", field=field)
        return text
