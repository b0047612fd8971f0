from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from ..models import (
    Actor, CreateRFQData, Decision, QUOTING_ROLES, RFQ, RFQItem, RFQTransition, SubmitQuote,
)
from shared.settings import settings
from shared.logging import get_logger, rfq_logger
from shared.models_db import RFQStatus, utcnow

from .errors import (
    ConflictError, ForbiddenError, InvalidTransitionError, NotFoundError, RFQError, RFQValidationError,
)
from .lifecycle import Denied, RFQEvent, TERMINAL_STATES, decide, is_expired, next_timestamp
from .ports import AbstractCatalog, AbstractNotifier, AbstractRepository

logger = get_logger(__name__)

_DECISION_EVENTS = {
    Decision.ACCEPT: RFQEvent.ACCEPT,
    Decision.REJECT: RFQEvent.REJECT,
}


def generate_rfq_number(now: datetime) -> str:
    return f"RFQ-{now:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


def _as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class RFQService:
    """
    Lifecycle manager for RFQs.

    Every mutating operation is one unit of work on the session: it reads the
    current state, asks lifecycle.decide() whether the change is allowed, then
    writes it with a conditional update keyed on the status it read. The
    notifier is called only after commit, and only by the caller whose
    conditional update matched.
    """

    def __init__(
        self,
        db_repository: AbstractRepository,
        catalog: AbstractCatalog,
        notifier: AbstractNotifier,
        session: AsyncSession,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db_repository = db_repository
        self.catalog = catalog
        self.notifier = notifier
        self.session = session
        self.clock = clock

    @asynccontextmanager
    async def _unit_of_work(self, operation: str, rfq_id: Optional[str] = None):
        try:
            yield
            await self.session.commit()
        except RFQError:
            await self.session.rollback()
            raise
        except Exception as e:
            logger.error(f"Unexpected error during {operation} (RFQ {rfq_id or 'N/A'}): {e}", exc_info=True)
            await self.session.rollback()
            raise

    async def _load(self, rfq_id: str) -> RFQ:
        rfq = await self.db_repository.get_rfq_by_id(rfq_id)
        if rfq is None:
            logger.warning(f"RFQ {rfq_id} not found")
            raise NotFoundError(f"RFQ {rfq_id} not found", rfq_id=rfq_id)
        return rfq

    async def _apply(self, rfq: RFQ, event: RFQEvent, now: datetime) -> RFQTransition:
        log = rfq_logger(logger, rfq.id)
        outcome = decide(rfq.status, event, now, rfq.expiresAt)
        if isinstance(outcome, Denied):
            log.warning(f"Denied '{event.value}': {outcome.reason}")
            raise InvalidTransitionError(rfq.id, outcome.current, outcome.requested, outcome.reason)

        updated_at = next_timestamp(rfq.updatedAt, now)
        won = await self.db_repository.transition_rfq(rfq.id, outcome.current, outcome.target, updated_at)
        if not won:
            log.warning(f"Lost race applying '{event.value}'; stored status is no longer {outcome.current.value}")
            raise ConflictError(
                f"RFQ was modified concurrently; it is no longer {outcome.current.value}", rfq_id=rfq.id
            )
        log.info(f"{outcome.current.value} -> {outcome.target.value}")
        return RFQTransition(
            rfqId=rfq.id,
            rfqNumber=rfq.rfqNumber,
            userId=rfq.userId,
            fromStatus=outcome.current,
            toStatus=outcome.target,
            occurredAt=updated_at,
        )

    async def _notify(self, transitions: List[RFQTransition]) -> None:
        # The transitions are already committed; a failed announcement is reported, not rolled back.
        for transition in transitions:
            try:
                await self.notifier.rfq_transitioned(transition)
            except Exception as e:
                logger.error(
                    f"Failed to announce {transition.fromStatus.value} -> {transition.toStatus.value} "
                    f"for RFQ {transition.rfqId}: {e}",
                    exc_info=True,
                )

    @staticmethod
    def _validate_create(buyer_id: str, data: CreateRFQData) -> None:
        if not buyer_id:
            raise RFQValidationError("Buyer id is required")
        if not data.subject or not data.subject.strip():
            raise RFQValidationError("Subject is required")
        if not data.items:
            raise RFQValidationError("An RFQ needs at least one item")
        for index, item in enumerate(data.items):
            if not item.productId:
                raise RFQValidationError(f"Item {index}: productId is required")
            if item.quantity <= 0:
                raise RFQValidationError(f"Item {index}: quantity must be positive, got {item.quantity}")
        if data.targetPrice is not None and data.targetPrice < 0:
            raise RFQValidationError("Target price cannot be negative")

    async def _allocate_rfq_number(self, now: datetime) -> str:
        for _ in range(settings.RFQ_NUMBER_MAX_ATTEMPTS):
            candidate = generate_rfq_number(now)
            if not await self.db_repository.rfq_number_exists(candidate):
                return candidate
            logger.warning(f"RFQ number {candidate} already in use, regenerating")
        raise ConflictError(
            f"Could not allocate a free RFQ number after {settings.RFQ_NUMBER_MAX_ATTEMPTS} attempts"
        )

    async def create_rfq(self, buyer_id: str, data: CreateRFQData) -> RFQ:
        """
        Creates a pending RFQ for buyer_id.

        Product name, image and wholesale price are copied from the catalog now and are not
        refreshed if the product changes later.
        """
        self._validate_create(buyer_id, data)
        now = self.clock()
        rfq_id = uuid.uuid4().hex
        logger.info(f"Creating RFQ {rfq_id} for buyer {buyer_id} with {len(data.items)} item(s)")

        async with self._unit_of_work("create_rfq", rfq_id):
            items: List[RFQItem] = []
            for request_item in data.items:
                product = await self.catalog.get_product(request_item.productId)
                if product is None:
                    raise NotFoundError(f"Product {request_item.productId} not found", rfq_id=rfq_id)
                items.append(RFQItem(
                    id=uuid.uuid4().hex,
                    productId=request_item.productId,
                    productName=product.name,
                    productImage=product.image,
                    unitPrice=product.unitPrice,
                    quantity=request_item.quantity,
                    notes=request_item.notes,
                ))

            expires_at = _as_naive_utc(data.expiresAt)
            if expires_at is None:
                expires_at = now + timedelta(days=settings.RFQ_DEFAULT_TTL_DAYS)

            rfq_number = await self._allocate_rfq_number(now)
            rfq = await self.db_repository.add_rfq(
                rfq_id=rfq_id,
                rfq_number=rfq_number,
                user_id=buyer_id,
                subject=data.subject.strip(),
                message=data.message,
                target_price=data.targetPrice,
                expires_at=expires_at,
                items=items,
                created_at=now,
            )

        logger.info(f"RFQ {rfq.rfqNumber} ({rfq.id}) created, expires at {expires_at.isoformat()}")
        return rfq

    async def submit_quote(self, rfq_id: str, supplier: Actor, quote: SubmitQuote) -> RFQ:
        """Supplier/staff answer to a pending RFQ: pending -> quoted."""
        if supplier.role not in QUOTING_ROLES:
            logger.warning(f"User {supplier.userId} with role {supplier.role.value} tried to quote RFQ {rfq_id}")
            raise ForbiddenError(f"Role {supplier.role.value} cannot submit quotes", rfq_id=rfq_id)

        async with self._unit_of_work("submit_quote", rfq_id):
            rfq = await self._load(rfq_id)
            transition = await self._apply(rfq, RFQEvent.QUOTE, self.clock())
            await self.db_repository.attach_quote(rfq_id, supplier.userId, quote, transition.occurredAt)
            rfq = await self._load(rfq_id)

        await self._notify([transition])
        return rfq

    async def respond(self, rfq_id: str, buyer_id: str, decision: Decision) -> RFQ:
        """Buyer accepts or rejects the quote on their RFQ: quoted -> accepted | rejected."""
        async with self._unit_of_work("respond", rfq_id):
            rfq = await self._load(rfq_id)
            if rfq.userId != buyer_id:
                logger.warning(f"User {buyer_id} tried to respond to RFQ {rfq_id} owned by {rfq.userId}")
                raise ForbiddenError("Only the buyer who raised the RFQ can respond to it", rfq_id=rfq_id)
            transition = await self._apply(rfq, _DECISION_EVENTS[decision], self.clock())
            rfq = await self._load(rfq_id)

        await self._notify([transition])
        return rfq

    async def expire_if_due(self, rfq_id: str, now: Optional[datetime] = None) -> RFQ:
        """Expires one RFQ if its expiry has passed; otherwise returns it unchanged."""
        now = _as_naive_utc(now) or self.clock()
        transition: Optional[RFQTransition] = None
        async with self._unit_of_work("expire_if_due", rfq_id):
            rfq = await self._load(rfq_id)
            if rfq.status not in TERMINAL_STATES and is_expired(rfq.expiresAt, now):
                transition = await self._apply(rfq, RFQEvent.EXPIRE, now)
                rfq = await self._load(rfq_id)

        if transition is not None:
            await self._notify([transition])
        return rfq

    async def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """
        Expires every open RFQ whose expires_at <= now and returns how many
        this call moved. Rows another sweep got to first are skipped, so
        overlapping or repeated runs never expire (or announce) an RFQ twice.
        """
        now = _as_naive_utc(now) or self.clock()
        batch_size = settings.SWEEP_BATCH_SIZE
        total = 0
        logger.info(f"Expiry sweep started at {now.isoformat()}")

        while True:
            transitions: List[RFQTransition] = []
            async with self._unit_of_work("sweep_expired"):
                candidates = await self.db_repository.find_expirable(now, batch_size)
                for rfq in candidates:
                    try:
                        transitions.append(await self._apply(rfq, RFQEvent.EXPIRE, now))
                    except (ConflictError, InvalidTransitionError) as e:
                        logger.info(f"Sweep skipped RFQ {rfq.id}: {e.detail}")

            await self._notify(transitions)
            total += len(transitions)
            if len(candidates) < batch_size or not transitions:
                break

        logger.info(f"Expiry sweep at {now.isoformat()} expired {total} RFQ(s)")
        return total

    async def get_rfq(self, rfq_id: str) -> RFQ:
        return await self._load(rfq_id)

    async def get_rfq_by_number(self, rfq_number: str) -> RFQ:
        rfq = await self.db_repository.get_rfq_by_number(rfq_number)
        if rfq is None:
            logger.warning(f"RFQ number {rfq_number} not found")
            raise NotFoundError(f"RFQ {rfq_number} not found")
        return rfq

    async def list_rfqs(self, status: Optional[RFQStatus] = None, user_id: Optional[str] = None) -> List[RFQ]:
        return await self.db_repository.list_rfqs(status=status, user_id=user_id)
