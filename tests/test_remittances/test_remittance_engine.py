"""
Tests for RemittanceLifecycleEngine.

The engine runs on the frozen clock from conftest, so deadlines and
remittance numbers are deterministic.
"""

import uuid
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from marketplace.core.actor import Actor
from marketplace.core.exceptions import (
    DeliveryProofRequiredError,
    InvalidStateTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from marketplace.database.base import as_utc
from marketplace.database.models import ActivityLog, Remittance
from marketplace.services.remittances.enums import (
    AlertLevel,
    BankTransferStatus,
    CommissionType,
    DeliveryMethod,
    RemittanceStatus,
)
from marketplace.services.remittances.numbering import RemittanceNumberAllocator
from marketplace.services.remittances.service import (
    BankAccountInput,
    RecipientInput,
    RemittanceFilters,
    RemittanceLifecycleEngine,
    RemittanceTypeInput,
)

FROZEN_NOW_YEAR = 2025


async def send(engine, sender, recipient, remittance_type, amount="100", **kwargs):
    kwargs.setdefault("delivery_method", DeliveryMethod.CASH)
    return await engine.create(
        sender, remittance_type.id, Decimal(amount), recipient.id, **kwargs
    )


async def validated(engine, sender, admin, recipient, remittance_type, **kwargs):
    remittance = await send(
        engine, sender, recipient, remittance_type, proof_ref="receipt.jpg", **kwargs
    )
    return await engine.validate_payment(remittance.id, admin)


def sent_transitions(notifier) -> list[str]:
    return [call.args[0].transition for call in notifier.dispatch.call_args_list]


# ============================================================================
# Creation
# ============================================================================


class TestCreateRemittance:
    """Tests for quoting and storing new remittances."""

    async def test_create_stores_the_computed_quote(
        self, remittance_engine, buyer, remittance_type_factory, recipient_factory
    ):
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(buyer)

        remittance = await send(remittance_engine, buyer, recipient, remittance_type)

        assert remittance.status == RemittanceStatus.PAYMENT_PENDING
        assert remittance.remittance_number == f"REM-{FROZEN_NOW_YEAR}-0001"
        assert remittance.amount == Decimal("100.00")
        assert remittance.commission == Decimal("2.00")
        assert remittance.total_amount == Decimal("102.00")
        assert remittance.delivery_amount == Decimal("2448.00")
        assert remittance.currency_code == "USD"
        assert remittance.delivery_currency == "UAH"
        assert remittance.recipient_bank_account_id is None

    async def test_numbers_are_sequential(
        self, remittance_engine, buyer, remittance_type_factory, recipient_factory
    ):
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(buyer)

        first = await send(remittance_engine, buyer, recipient, remittance_type)
        second = await send(remittance_engine, buyer, recipient, remittance_type)

        assert first.remittance_number == "REM-2025-0001"
        assert second.remittance_number == "REM-2025-0002"

    async def test_number_taken_after_the_existence_check_is_retried(
        self,
        db_session,
        remittance_engine,
        notifier,
        clock,
        test_settings,
        buyer,
        remittance_type_factory,
        recipient_factory,
    ):
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(buyer)
        first = await send(remittance_engine, buyer, recipient, remittance_type)

        # Sees neither the latest number nor the stored one
        stale = RemittanceLifecycleEngine(
            db_session,
            notifier=notifier,
            clock=clock,
            number_allocator=RemittanceNumberAllocator(
                AsyncMock(return_value=None),
                AsyncMock(return_value=False),
                clock=clock,
            ),
            settings=test_settings,
        )
        second = await send(stale, buyer, recipient, remittance_type)

        assert first.remittance_number == "REM-2025-0001"
        assert second.remittance_number == "REM-2025-0002"
        count = await db_session.scalar(select(func.count()).select_from(Remittance))
        assert count == 2

    async def test_proof_at_creation_skips_payment_pending(
        self, remittance_engine, buyer, remittance_type_factory, recipient_factory
    ):
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(buyer)

        remittance = await send(
            remittance_engine, buyer, recipient, remittance_type, proof_ref="r.jpg"
        )

        assert remittance.status == RemittanceStatus.PAYMENT_PROOF_UPLOADED
        assert remittance.payment_proof_ref == "r.jpg"
        assert remittance.payment_proof_uploaded_at is not None

    async def test_amount_outside_bounds_creates_nothing(
        self, db_session, remittance_engine, buyer, remittance_type_factory,
        recipient_factory,
    ):
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(buyer)

        with pytest.raises(ValidationError):
            await send(remittance_engine, buyer, recipient, remittance_type, "5")

        _, total = await remittance_engine.list_remittances(buyer)
        assert total == 0

    async def test_delivery_method_must_be_offered(
        self, remittance_engine, buyer, remittance_type_factory, recipient_factory
    ):
        remittance_type = await remittance_type_factory(
            delivery_methods=[DeliveryMethod.CASH]
        )
        recipient = await recipient_factory(buyer)

        with pytest.raises(ValidationError):
            await send(
                remittance_engine,
                buyer,
                recipient,
                remittance_type,
                delivery_method=DeliveryMethod.BANK_TRANSFER,
            )

    async def test_recipient_of_another_sender_is_refused(
        self, remittance_engine, buyer, stranger, remittance_type_factory,
        recipient_factory,
    ):
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(stranger)

        with pytest.raises(PermissionDeniedError):
            await send(remittance_engine, buyer, recipient, remittance_type)

    async def test_unknown_type_is_not_found(
        self, remittance_engine, buyer, recipient_factory
    ):
        recipient = await recipient_factory(buyer)

        with pytest.raises(NotFoundError):
            await remittance_engine.create(
                buyer,
                recipient.id,
                Decimal("100"),
                recipient.id,
                DeliveryMethod.CASH,
            )

    async def test_bank_delivery_uses_default_account(
        self, remittance_engine, buyer, remittance_type_factory, recipient_factory
    ):
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(buyer)

        remittance = await send(
            remittance_engine,
            buyer,
            recipient,
            remittance_type,
            delivery_method=DeliveryMethod.BANK_TRANSFER,
        )

        assert remittance.recipient_bank_account_id == recipient.bank_accounts[0].id

    @pytest.mark.parametrize(
        "with_account, default_account", [(False, False), (True, False)]
    )
    async def test_bank_delivery_without_usable_account_is_rejected(
        self,
        remittance_engine,
        buyer,
        remittance_type_factory,
        recipient_factory,
        with_account,
        default_account,
    ):
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(
            buyer, with_account=with_account, default_account=default_account
        )

        with pytest.raises(ValidationError):
            await send(
                remittance_engine,
                buyer,
                recipient,
                remittance_type,
                delivery_method=DeliveryMethod.BANK_TRANSFER,
            )

    async def test_creation_is_logged(
        self, db_session, remittance_engine, buyer, remittance_type_factory,
        recipient_factory,
    ):
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(buyer)

        remittance = await send(remittance_engine, buyer, recipient, remittance_type)

        entry = (
            await db_session.scalars(
                select(ActivityLog).where(ActivityLog.entity_id == remittance.id)
            )
        ).one()
        assert entry.action == "remittance_created"
        assert entry.to_state == "payment_pending"
        assert entry.performed_by == "Olena Buyer"
        assert entry.details["remittance_number"] == remittance.remittance_number


# ============================================================================
# Payment phase
# ============================================================================


class TestPaymentPhase:
    """Tests for proof upload, validation, rejection and retry."""

    async def test_validation_starts_the_delivery_deadline(
        self, remittance_engine, notifier, buyer, admin, clock,
        remittance_type_factory, recipient_factory,
    ):
        remittance_type = await remittance_type_factory(max_delivery_days=3)
        recipient = await recipient_factory(buyer)

        remittance = await validated(
            remittance_engine, buyer, admin, recipient, remittance_type
        )

        assert remittance.status == RemittanceStatus.PAYMENT_VALIDATED
        assert remittance.payment_validated_by == admin.user_id
        assert as_utc(remittance.max_delivery_date) == clock() + timedelta(days=3)
        assert sent_transitions(notifier) == ["payment_validated"]

    async def test_validation_needs_uploaded_proof(
        self, remittance_engine, buyer, admin, remittance_type_factory,
        recipient_factory,
    ):
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(buyer)
        remittance = await send(remittance_engine, buyer, recipient, remittance_type)

        with pytest.raises(InvalidStateTransitionError):
            await remittance_engine.validate_payment(remittance.id, admin)

    async def test_only_admin_validates(
        self, remittance_engine, buyer, remittance_type_factory, recipient_factory
    ):
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(buyer)
        remittance = await send(
            remittance_engine, buyer, recipient, remittance_type, proof_ref="r.jpg"
        )

        with pytest.raises(PermissionDeniedError):
            await remittance_engine.validate_payment(remittance.id, buyer)

    async def test_stranger_cannot_upload_proof(
        self, remittance_engine, buyer, stranger, remittance_type_factory,
        recipient_factory,
    ):
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(buyer)
        remittance = await send(remittance_engine, buyer, recipient, remittance_type)

        with pytest.raises(PermissionDeniedError):
            await remittance_engine.upload_payment_proof(
                remittance.id, "r.jpg", stranger
            )

    async def test_reject_then_retry_clears_the_rejection(
        self, remittance_engine, notifier, buyer, admin, remittance_type_factory,
        recipient_factory,
    ):
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(buyer)
        remittance = await send(
            remittance_engine, buyer, recipient, remittance_type, proof_ref="r.jpg"
        )

        rejected = await remittance_engine.reject_payment(
            remittance.id, admin, "Blurry photo"
        )
        assert rejected.status == RemittanceStatus.PAYMENT_REJECTED
        assert rejected.payment_rejection_reason == "Blurry photo"

        retried = await remittance_engine.retry_payment(remittance.id, buyer)
        assert retried.status == RemittanceStatus.PAYMENT_PENDING
        assert retried.payment_proof_ref is None
        assert retried.payment_rejection_reason is None
        assert retried.payment_rejected_at is None

        again = await remittance_engine.upload_payment_proof(
            remittance.id, "clear.jpg", buyer
        )
        assert again.status == RemittanceStatus.PAYMENT_PROOF_UPLOADED
        assert sent_transitions(notifier) == ["payment_rejected"]

    async def test_rejection_requires_reason(
        self, remittance_engine, buyer, admin, remittance_type_factory,
        recipient_factory,
    ):
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(buyer)
        remittance = await send(
            remittance_engine, buyer, recipient, remittance_type, proof_ref="r.jpg"
        )

        with pytest.raises(ValidationError):
            await remittance_engine.reject_payment(remittance.id, admin, "  ")

    async def test_lost_update_is_concurrent_update(
        self, remittance_engine, buyer, remittance_type_factory, recipient_factory
    ):
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(buyer)
        remittance = await send(remittance_engine, buyer, recipient, remittance_type)
        remittance_engine.repository.compare_and_set = AsyncMock(return_value=False)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await remittance_engine.upload_payment_proof(
                remittance.id, "r.jpg", buyer
            )

        assert exc_info.value.context["reason"] == "concurrent_update"


# ============================================================================
# Delivery phase
# ============================================================================


class TestDeliveryPhase:
    """Tests for processing, delivery confirmation, completion and cancel."""

    async def test_full_lifecycle(
        self, db_session, remittance_engine, buyer, admin, remittance_type_factory,
        recipient_factory,
    ):
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(buyer)
        remittance = await validated(
            remittance_engine, buyer, admin, recipient, remittance_type
        )

        await remittance_engine.start_processing(remittance.id, admin)
        await remittance_engine.confirm_delivery(
            remittance.id, admin, proof_ref="signed.jpg", notes="Paid at branch"
        )
        remittance = await remittance_engine.complete(remittance.id, admin)

        assert remittance.status == RemittanceStatus.COMPLETED
        assert remittance.delivery_proof_ref == "signed.jpg"
        assert remittance.delivery_notes == "Paid at branch"
        assert remittance.completed_by == admin.user_id

        actions = set(
            (
                await db_session.scalars(
                    select(ActivityLog.action).where(
                        ActivityLog.entity_id == remittance.id
                    )
                )
            ).all()
        )
        assert actions == {
            "remittance_created",
            "payment_validated",
            "processing_started",
            "delivery_confirmed",
            "remittance_completed",
        }

    async def test_linked_recipient_user_can_confirm(
        self, remittance_engine, buyer, admin, user_factory,
        remittance_type_factory, recipient_factory,
    ):
        recipient_user = await user_factory(full_name="Ivan Recipient")
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(buyer, linked_user_id=recipient_user.id)
        remittance = await validated(
            remittance_engine, buyer, admin, recipient, remittance_type
        )
        await remittance_engine.start_processing(remittance.id, admin)

        delivered = await remittance_engine.confirm_delivery(
            remittance.id, Actor.from_user(recipient_user), proof_ref="selfie.jpg"
        )

        assert delivered.status == RemittanceStatus.DELIVERED
        assert delivered.delivered_by == recipient_user.id

    async def test_sender_cannot_confirm_delivery(
        self, remittance_engine, buyer, admin, remittance_type_factory,
        recipient_factory,
    ):
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(buyer)
        remittance = await validated(
            remittance_engine, buyer, admin, recipient, remittance_type
        )
        await remittance_engine.start_processing(remittance.id, admin)

        with pytest.raises(PermissionDeniedError):
            await remittance_engine.confirm_delivery(
                remittance.id, buyer, proof_ref="fake.jpg"
            )

    async def test_delivery_needs_evidence(
        self, remittance_engine, buyer, admin, remittance_type_factory,
        recipient_factory,
    ):
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(buyer)
        remittance = await validated(
            remittance_engine, buyer, admin, recipient, remittance_type
        )
        await remittance_engine.start_processing(remittance.id, admin)

        with pytest.raises(DeliveryProofRequiredError):
            await remittance_engine.confirm_delivery(remittance.id, admin)

    async def test_delivery_requires_processing(
        self, remittance_engine, buyer, admin, remittance_type_factory,
        recipient_factory,
    ):
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(buyer)
        remittance = await validated(
            remittance_engine, buyer, admin, recipient, remittance_type
        )

        with pytest.raises(InvalidStateTransitionError):
            await remittance_engine.confirm_delivery(
                remittance.id, admin, proof_ref="signed.jpg"
            )

    async def test_owner_cancels_before_validation(
        self, remittance_engine, notifier, buyer, remittance_type_factory,
        recipient_factory,
    ):
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(buyer)
        remittance = await send(remittance_engine, buyer, recipient, remittance_type)

        cancelled = await remittance_engine.cancel(
            remittance.id, buyer, "Changed my mind"
        )

        assert cancelled.status == RemittanceStatus.CANCELLED
        assert cancelled.cancellation_reason == "Changed my mind"
        assert sent_transitions(notifier) == ["remittance_cancelled"]

    async def test_owner_cannot_cancel_validated_but_admin_can(
        self, remittance_engine, buyer, admin, remittance_type_factory,
        recipient_factory,
    ):
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(buyer)
        remittance = await validated(
            remittance_engine, buyer, admin, recipient, remittance_type
        )
        remittance_id = remittance.id

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await remittance_engine.cancel(remittance_id, buyer)
        assert exc_info.value.context["reason"] == "admin_required"

        cancelled = await remittance_engine.cancel(remittance_id, admin, "Fraud")
        assert cancelled.status == RemittanceStatus.CANCELLED

    async def test_processing_remittance_cannot_be_cancelled(
        self, remittance_engine, buyer, admin, remittance_type_factory,
        recipient_factory,
    ):
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(buyer)
        remittance = await validated(
            remittance_engine, buyer, admin, recipient, remittance_type
        )
        await remittance_engine.start_processing(remittance.id, admin)

        with pytest.raises(InvalidStateTransitionError):
            await remittance_engine.cancel(remittance.id, admin)

    async def test_stranger_cannot_cancel(
        self, remittance_engine, buyer, stranger, remittance_type_factory,
        recipient_factory,
    ):
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(buyer)
        remittance = await send(remittance_engine, buyer, recipient, remittance_type)

        with pytest.raises(PermissionDeniedError):
            await remittance_engine.cancel(remittance.id, stranger)


# ============================================================================
# Bank transfers
# ============================================================================


class TestBankTransfers:
    """Tests for the payout sub-ledger of non-cash remittances."""

    async def _bank_remittance(self, engine, buyer, admin, type_factory, rec_factory):
        remittance_type = await type_factory()
        recipient = await rec_factory(buyer)
        return await validated(
            engine,
            buyer,
            admin,
            recipient,
            remittance_type,
            delivery_method=DeliveryMethod.BANK_TRANSFER,
        )

    async def test_transfer_attempts_after_failure(
        self, remittance_engine, buyer, admin, remittance_type_factory,
        recipient_factory,
    ):
        remittance = await self._bank_remittance(
            remittance_engine, buyer, admin, remittance_type_factory,
            recipient_factory,
        )
        remittance_id = remittance.id

        first = await remittance_engine.create_bank_transfer(remittance_id, admin)
        first_id = first.id
        assert first.attempt == 1
        assert first.status == BankTransferStatus.PENDING
        assert first.amount_transferred == Decimal("2448.00")

        # The rollback expires loaded objects, so only ids are reused below
        with pytest.raises(ValidationError):
            await remittance_engine.create_bank_transfer(remittance_id, admin)

        await remittance_engine.update_bank_transfer_status(
            first_id, admin, BankTransferStatus.PROCESSING, reference_number="TX-1"
        )
        failed = await remittance_engine.update_bank_transfer_status(
            first_id, admin, BankTransferStatus.FAILED, error_message="IBAN closed"
        )
        assert failed.status == BankTransferStatus.FAILED
        assert failed.error_message == "IBAN closed"
        assert failed.reference_number == "TX-1"

        second = await remittance_engine.create_bank_transfer(remittance_id, admin)
        assert second.attempt == 2

    async def test_transfer_cannot_skip_processing(
        self, remittance_engine, buyer, admin, remittance_type_factory,
        recipient_factory,
    ):
        remittance = await self._bank_remittance(
            remittance_engine, buyer, admin, remittance_type_factory,
            recipient_factory,
        )
        transfer = await remittance_engine.create_bank_transfer(remittance.id, admin)

        with pytest.raises(InvalidStateTransitionError):
            await remittance_engine.update_bank_transfer_status(
                transfer.id, admin, BankTransferStatus.COMPLETED
            )

    async def test_cash_remittance_has_no_transfer(
        self, remittance_engine, buyer, admin, remittance_type_factory,
        recipient_factory,
    ):
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(buyer)
        remittance = await validated(
            remittance_engine, buyer, admin, recipient, remittance_type
        )

        with pytest.raises(ValidationError):
            await remittance_engine.create_bank_transfer(remittance.id, admin)

    async def test_unvalidated_remittance_has_no_transfer(
        self, remittance_engine, buyer, admin, remittance_type_factory,
        recipient_factory,
    ):
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(buyer)
        remittance = await send(
            remittance_engine,
            buyer,
            recipient,
            remittance_type,
            delivery_method=DeliveryMethod.BANK_TRANSFER,
        )

        with pytest.raises(ValidationError):
            await remittance_engine.create_bank_transfer(remittance.id, admin)

    async def test_unknown_transfer_is_not_found(self, remittance_engine, admin):
        with pytest.raises(NotFoundError):
            await remittance_engine.update_bank_transfer_status(
                uuid.uuid4(), admin, BankTransferStatus.PROCESSING
            )


# ============================================================================
# Types and quotes
# ============================================================================


class TestRemittanceTypes:
    """Tests for admin configuration of remittance types."""

    def type_input(self, **overrides) -> RemittanceTypeInput:
        values = dict(
            name="EUR to UAH",
            currency_code="eur",
            delivery_currency="uah",
            exchange_rate=Decimal("42.5"),
            min_amount=Decimal("20"),
            max_amount=Decimal("1000"),
            delivery_methods=[DeliveryMethod.CASH, DeliveryMethod.CASH],
            commission_type=CommissionType.FIXED,
            commission_fixed=Decimal("3"),
        )
        values.update(overrides)
        return RemittanceTypeInput(**values)

    async def test_create_normalizes_configuration(self, remittance_engine, admin):
        remittance_type = await remittance_engine.create_type(admin, self.type_input())

        assert remittance_type.currency_code == "EUR"
        assert remittance_type.delivery_currency == "UAH"
        assert remittance_type.delivery_methods == ["cash"]
        assert remittance_type.commission_fixed == Decimal("3.00")
        assert remittance_type.is_active

        quote = await remittance_engine.calculate(remittance_type.id, "100")
        assert quote.total_charged == Decimal("103.00")
        assert quote.delivery_amount == Decimal("4377.50")

    async def test_only_admin_creates_types(self, remittance_engine, buyer):
        with pytest.raises(PermissionDeniedError):
            await remittance_engine.create_type(buyer, self.type_input())

    @pytest.mark.parametrize(
        "overrides",
        [
            {"max_amount": Decimal("10")},
            {"exchange_rate": Decimal("0")},
            {"commission_percentage": Decimal("101")},
            {"delivery_methods": []},
            {"currency_code": "EURO"},
            {"max_delivery_days": 0},
        ],
    )
    async def test_inconsistent_configuration_rejected(
        self, remittance_engine, admin, overrides
    ):
        with pytest.raises(ValidationError):
            await remittance_engine.create_type(admin, self.type_input(**overrides))

    async def test_duplicate_name_rejected(self, remittance_engine, admin):
        await remittance_engine.create_type(admin, self.type_input())

        with pytest.raises(ValidationError):
            await remittance_engine.create_type(admin, self.type_input())

    async def test_update_validates_merged_configuration(
        self, remittance_engine, admin
    ):
        remittance_type = await remittance_engine.create_type(admin, self.type_input())
        type_id = remittance_type.id

        with pytest.raises(ValidationError):
            await remittance_engine.update_type(
                type_id, admin, max_amount=Decimal("5")
            )

        updated = await remittance_engine.update_type(
            type_id, admin, exchange_rate=Decimal("43")
        )
        assert updated.exchange_rate == Decimal("43")

    async def test_update_rejects_unknown_fields(self, remittance_engine, admin):
        remittance_type = await remittance_engine.create_type(admin, self.type_input())

        with pytest.raises(ValidationError):
            await remittance_engine.update_type(
                remittance_type.id, admin, remittance_number="REM-1"
            )

    async def test_deactivated_type_cannot_be_quoted(
        self, remittance_engine, admin, remittance_type_factory
    ):
        remittance_type = await remittance_type_factory(name="Retired")

        await remittance_engine.deactivate_type(remittance_type.id, admin)

        with pytest.raises(ValidationError):
            await remittance_engine.calculate(remittance_type.id, "100")
        active = await remittance_engine.list_types()
        assert remittance_type.id not in [t.id for t in active]
        everything = await remittance_engine.list_types(active_only=False)
        assert remittance_type.id in [t.id for t in everything]


# ============================================================================
# Recipients, reads and alerts
# ============================================================================


class TestReads:
    async def test_recipient_requires_name(self, remittance_engine, buyer):
        with pytest.raises(ValidationError):
            await remittance_engine.create_recipient(
                buyer, RecipientInput(full_name=" ")
            )

    async def test_recipient_accounts_are_stored(self, remittance_engine, buyer):
        recipient = await remittance_engine.create_recipient(
            buyer,
            RecipientInput(
                full_name="Maria",
                phone="+380501112233",
                bank_accounts=[
                    BankAccountInput(
                        bank_name="Mono",
                        account_number="UA00001",
                        account_holder="Maria",
                        account_type="card",
                    )
                ],
            ),
        )

        recipients = await remittance_engine.list_recipients(buyer)
        assert [r.id for r in recipients] == [recipient.id]
        assert recipients[0].bank_accounts[0].bank_name == "Mono"

    async def test_visibility(
        self, remittance_engine, buyer, stranger, admin, user_factory,
        remittance_type_factory, recipient_factory,
    ):
        recipient_user = await user_factory()
        remittance_type = await remittance_type_factory()
        recipient = await recipient_factory(buyer, linked_user_id=recipient_user.id)
        remittance = await send(remittance_engine, buyer, recipient, remittance_type)

        for actor in (buyer, admin, Actor.from_user(recipient_user)):
            found = await remittance_engine.get_remittance(remittance.id, actor)
            assert found.id == remittance.id

        with pytest.raises(PermissionDeniedError):
            await remittance_engine.get_remittance(remittance.id, stranger)

    async def test_users_only_list_their_own(
        self, remittance_engine, buyer, stranger, admin, remittance_type_factory,
        recipient_factory,
    ):
        remittance_type = await remittance_type_factory()
        mine = await recipient_factory(buyer)
        theirs = await recipient_factory(stranger)
        await send(remittance_engine, buyer, mine, remittance_type)
        await send(remittance_engine, stranger, theirs, remittance_type)

        items, total = await remittance_engine.list_remittances(
            buyer, RemittanceFilters(sender_id=stranger.user_id)
        )
        assert total == 1
        assert items[0].sender_id == buyer.user_id

        _, everything = await remittance_engine.list_remittances(admin)
        assert everything == 2

        _, pending = await remittance_engine.list_remittances(
            admin, RemittanceFilters(status=RemittanceStatus.PAYMENT_PENDING)
        )
        assert pending == 2

    async def test_alerts_flag_close_deadlines(
        self, remittance_engine, buyer, admin, clock, remittance_type_factory,
        recipient_factory,
    ):
        short = await remittance_type_factory(max_delivery_days=3)
        long = await remittance_type_factory(max_delivery_days=10)
        recipient = await recipient_factory(buyer)
        urgent = await validated(remittance_engine, buyer, admin, recipient, short)
        await validated(remittance_engine, buyer, admin, recipient, long)

        flagged = await remittance_engine.remittances_needing_alert(
            admin, now=clock() + timedelta(days=2, hours=1)
        )

        assert [(r.id, a.level) for r, a in flagged] == [
            (urgent.id, AlertLevel.ERROR)
        ]

    async def test_alerts_are_admin_only(self, remittance_engine, buyer):
        with pytest.raises(PermissionDeniedError):
            await remittance_engine.remittances_needing_alert(buyer)
