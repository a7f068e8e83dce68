"""
Pytest configuration and shared test fixtures.

Tests run against an in-memory SQLite database through aiosqlite. The
engine is configured so SQLAlchemy controls transactions itself, which the
savepoints used by the activity logger and the inventory movement writer
require. Factories build users, catalog entries with stock, remittance
types and recipients; actors are built from the created users.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, Callable, Optional
from unittest.mock import Mock

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from marketplace.core.actor import Actor, ActorRole
from marketplace.core.config import Settings
from marketplace.database.base import Base
from marketplace.database.models import (
    Combo,
    ComboItem,
    InventoryRecord,
    Product,
    RemittanceType,
    User,
)
from marketplace.services.inventory.service import (
    InventoryReservationManager,
    StockLevel,
)
from marketplace.services.notifications.dispatcher import NotificationDispatcher
from marketplace.services.orders.service import OrderLifecycleEngine
from marketplace.services.remittances.enums import CommissionType, DeliveryMethod
from marketplace.services.remittances.service import (
    BankAccountInput,
    RecipientInput,
    RemittanceLifecycleEngine,
)

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Fixed "now" used by engines under test
FROZEN_NOW = datetime(2025, 10, 7, 12, 0, 0, 123456, tzinfo=timezone.utc)


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Settings for the in-memory test database."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        environment="test",
        notification_webhook_url=None,
    )


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """
    Create an async engine with a fresh schema.

    Yields:
        AsyncEngine: Engine bound to a single in-memory connection
    """
    engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool)

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def db_session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """
    Create a session with the same options as the application factory.

    Yields:
        AsyncSession: Session used by engines and factories in one test
    """
    factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with factory() as session:
        yield session


# ============================================================================
# Users and actors
# ============================================================================


@pytest.fixture
def user_factory(db_session: AsyncSession) -> Callable:
    """Factory persisting a ``User`` and returning it."""

    async def _create(
        role: ActorRole = ActorRole.USER,
        full_name: Optional[str] = None,
        is_active: bool = True,
    ) -> User:
        user_id = uuid.uuid4()
        user = User(
            id=user_id,
            email=f"{user_id.hex[:12]}@example.com",
            full_name=full_name,
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _create


@pytest.fixture
async def buyer_user(user_factory) -> User:
    return await user_factory(full_name="Olena Buyer")


@pytest.fixture
async def admin_user(user_factory) -> User:
    return await user_factory(role=ActorRole.ADMIN, full_name="Ada Admin")


@pytest.fixture
async def stranger_user(user_factory) -> User:
    return await user_factory(full_name="Sam Stranger")


@pytest.fixture
def buyer(buyer_user: User) -> Actor:
    return Actor.from_user(buyer_user)


@pytest.fixture
def admin(admin_user: User) -> Actor:
    return Actor.from_user(admin_user)


@pytest.fixture
def stranger(stranger_user: User) -> Actor:
    return Actor.from_user(stranger_user)


# ============================================================================
# Catalog and inventory
# ============================================================================


@pytest.fixture
def product_factory(db_session: AsyncSession) -> Callable:
    """
    Factory persisting a product and, when tracked, its inventory record.

    Example:
        product = await product_factory(price=Decimal("10.00"), on_hand=5)
    """

    async def _create(
        name: str = "Widget",
        price: Decimal = Decimal("10.00"),
        on_hand: int = 10,
        reserved: int = 0,
        track_inventory: bool = True,
    ) -> Product:
        product = Product(
            id=uuid.uuid4(),
            name=name,
            price=price,
            track_inventory=track_inventory,
            is_active=True,
        )
        db_session.add(product)
        if track_inventory:
            db_session.add(
                InventoryRecord(
                    id=uuid.uuid4(),
                    product_id=product.id,
                    on_hand_quantity=on_hand,
                    reserved_quantity=reserved,
                    version=1,
                )
            )
        await db_session.commit()
        return product

    return _create


@pytest.fixture
def combo_factory(db_session: AsyncSession) -> Callable:
    """Factory persisting a combo from ``(product, quantity)`` pairs."""

    async def _create(
        components: list[tuple[Product, int]],
        name: str = "Bundle",
        price: Decimal = Decimal("25.00"),
    ) -> Combo:
        combo = Combo(
            id=uuid.uuid4(),
            name=name,
            price=price,
            is_active=True,
            items=[
                ComboItem(id=uuid.uuid4(), product_id=product.id, quantity=quantity)
                for product, quantity in components
            ],
        )
        db_session.add(combo)
        await db_session.commit()
        return combo

    return _create


@pytest.fixture
def stock_of(db_session: AsyncSession) -> Callable:
    """Read the current counters of a product straight from the database."""

    async def _read(product: Product) -> StockLevel:
        levels = await InventoryReservationManager(db_session).get_availability(
            [product.id]
        )
        return levels[product.id]

    return _read


# ============================================================================
# Remittances
# ============================================================================


@pytest.fixture
def remittance_type_factory(db_session: AsyncSession) -> Callable:
    """Factory persisting a remittance type; defaults are 2% at rate 24."""

    async def _create(
        name: Optional[str] = None,
        commission_type: CommissionType = CommissionType.PERCENTAGE,
        commission_percentage: Decimal = Decimal("2"),
        commission_fixed: Decimal = Decimal("0"),
        exchange_rate: Decimal = Decimal("24"),
        min_amount: Decimal = Decimal("10"),
        max_amount: Optional[Decimal] = Decimal("5000"),
        delivery_methods: Optional[list[DeliveryMethod]] = None,
        max_delivery_days: int = 3,
        is_active: bool = True,
    ) -> RemittanceType:
        methods = delivery_methods or [DeliveryMethod.CASH, DeliveryMethod.BANK_TRANSFER]
        remittance_type = RemittanceType(
            id=uuid.uuid4(),
            name=name or f"USD to UAH {uuid.uuid4().hex[:6]}",
            currency_code="USD",
            delivery_currency="UAH",
            exchange_rate=exchange_rate,
            commission_type=commission_type,
            commission_percentage=commission_percentage,
            commission_fixed=commission_fixed,
            min_amount=min_amount,
            max_amount=max_amount,
            delivery_methods=[m.value for m in methods],
            max_delivery_days=max_delivery_days,
            is_active=is_active,
        )
        db_session.add(remittance_type)
        await db_session.commit()
        return remittance_type

    return _create


@pytest.fixture
def recipient_factory(remittance_engine: RemittanceLifecycleEngine) -> Callable:
    """Factory creating a recipient through the engine."""

    async def _create(
        sender: Actor,
        linked_user_id: Optional[uuid.UUID] = None,
        with_account: bool = True,
        default_account: bool = True,
    ):
        accounts = (
            [
                BankAccountInput(
                    bank_name="PrivatBank",
                    account_number="UA213223130000026007233566001",
                    account_holder="Ivan Recipient",
                    is_default=default_account,
                )
            ]
            if with_account
            else []
        )
        return await remittance_engine.create_recipient(
            sender,
            RecipientInput(
                full_name="Ivan Recipient",
                city="Kyiv",
                linked_user_id=linked_user_id,
                bank_accounts=accounts,
            ),
        )

    return _create


# ============================================================================
# Engines
# ============================================================================


@pytest.fixture
def notifier() -> Mock:
    """Notification dispatcher double recording dispatched events."""
    return Mock(spec=NotificationDispatcher)


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: FROZEN_NOW


@pytest.fixture
def order_engine(
    db_session: AsyncSession, notifier: Mock, test_settings: Settings
) -> OrderLifecycleEngine:
    return OrderLifecycleEngine(db_session, notifier=notifier, settings=test_settings)


@pytest.fixture
def remittance_engine(
    db_session: AsyncSession,
    notifier: Mock,
    clock: Callable[[], datetime],
    test_settings: Settings,
) -> RemittanceLifecycleEngine:
    return RemittanceLifecycleEngine(
        db_session, notifier=notifier, clock=clock, settings=test_settings
    )
