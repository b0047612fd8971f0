from datetime import datetime
from typing import Optional, List
from sqlmodel import select
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from rfq_desk.service.errors import ConflictError
from rfq_desk.service.lifecycle import OPEN_STATES
from rfq_desk.service.ports import AbstractRepository
from rfq_desk.models import RFQ, RFQItem, Quote, SubmitQuote
from shared.models_db import RFQTable, RFQItemTable, QuoteTable, RFQStatus
from shared.logging import get_logger

logger = get_logger(__name__)


def _to_domain(db_rfq: RFQTable) -> RFQ:
    quote = None
    if db_rfq.quote is not None:
        quote = Quote(
            supplierId=db_rfq.quote.supplier_id,
            price=db_rfq.quote.price,
            currency=db_rfq.quote.currency,
            terms=db_rfq.quote.terms,
            validUntil=db_rfq.quote.valid_until,
            submittedAt=db_rfq.quote.submitted_at,
        )
    return RFQ(
        id=db_rfq.id,
        rfqNumber=db_rfq.rfq_number,
        userId=db_rfq.user_id,
        subject=db_rfq.subject,
        message=db_rfq.message,
        targetPrice=db_rfq.target_price,
        status=db_rfq.status,
        items=[
            RFQItem(
                id=item.id,
                productId=item.product_id,
                productName=item.product_name,
                productImage=item.product_image,
                unitPrice=item.unit_price,
                quantity=item.quantity,
                notes=item.notes,
            )
            for item in db_rfq.items
        ],
        quote=quote,
        expiresAt=db_rfq.expires_at,
        createdAt=db_rfq.created_at,
        updatedAt=db_rfq.updated_at,
    )


class SQLModelRepository(AbstractRepository):
    """Concrete implementation of the repository using SQLModel and AsyncSession."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _select_rfqs(self):
        # Relationships are loaded eagerly; lazy loads are not available on an AsyncSession.
        # populate_existing refreshes objects already in the identity map after a conditional update.
        return (
            select(RFQTable)
            .options(selectinload(RFQTable.items), selectinload(RFQTable.quote))
            .execution_options(populate_existing=True)
        )

    async def add_rfq(
        self,
        rfq_id: str,
        rfq_number: str,
        user_id: str,
        subject: str,
        message: Optional[str],
        target_price: Optional[float],
        expires_at: Optional[datetime],
        items: List[RFQItem],
        created_at: datetime,
    ) -> RFQ:
        logger.info(f"Adding RFQ {rfq_number} for user {user_id} with {len(items)} item(s)")
        db_rfq = RFQTable(
            id=rfq_id,
            rfq_number=rfq_number,
            user_id=user_id,
            subject=subject,
            message=message,
            target_price=target_price,
            status=RFQStatus.PENDING,
            expires_at=expires_at,
            created_at=created_at,
            updated_at=created_at,
        )
        self.session.add(db_rfq)
        for position, item in enumerate(items):
            self.session.add(RFQItemTable(
                id=item.id,
                rfq_id=rfq_id,
                position=position,
                product_id=item.productId,
                product_name=item.productName,
                product_image=item.productImage,
                unit_price=item.unitPrice,
                quantity=item.quantity,
                notes=item.notes,
            ))
        try:
            await self.session.flush()
        except IntegrityError as e:
            logger.warning(f"Insert of RFQ {rfq_number} violated a unique constraint: {e.orig}")
            raise ConflictError(f"RFQ number {rfq_number} is already taken", rfq_id=rfq_id) from e
        logger.info(f"RFQ added/flushed with ID: {rfq_id}, created_at: {created_at}")
        # No commit here, transaction managed by the service
        return await self.get_rfq_by_id(rfq_id)

    async def get_rfq_by_id(self, rfq_id: str) -> Optional[RFQ]:
        logger.debug(f"Fetching RFQ by ID: {rfq_id}")
        result = await self.session.execute(self._select_rfqs().where(RFQTable.id == rfq_id))
        db_rfq = result.scalar_one_or_none()
        if db_rfq is None:
            logger.debug(f"No RFQ found with ID: {rfq_id}")
            return None
        return _to_domain(db_rfq)

    async def get_rfq_by_number(self, rfq_number: str) -> Optional[RFQ]:
        logger.debug(f"Fetching RFQ by number: {rfq_number}")
        result = await self.session.execute(self._select_rfqs().where(RFQTable.rfq_number == rfq_number))
        db_rfq = result.scalar_one_or_none()
        return _to_domain(db_rfq) if db_rfq else None

    async def rfq_number_exists(self, rfq_number: str) -> bool:
        result = await self.session.execute(select(RFQTable.id).where(RFQTable.rfq_number == rfq_number))
        return result.first() is not None

    async def list_rfqs(self, status: Optional[RFQStatus] = None, user_id: Optional[str] = None) -> List[RFQ]:
        statement = self._select_rfqs()
        if status is not None:
            statement = statement.where(RFQTable.status == status)
        if user_id is not None:
            statement = statement.where(RFQTable.user_id == user_id)
        statement = statement.order_by(RFQTable.created_at.desc(), RFQTable.rfq_number.desc())
        result = await self.session.execute(statement)
        rfqs = [_to_domain(db_rfq) for db_rfq in result.scalars().all()]
        logger.debug(f"Listed {len(rfqs)} RFQs (status={status.value if status else 'all'}, user={user_id or 'all'})")
        return rfqs

    async def find_expirable(self, now: datetime, limit: int) -> List[RFQ]:
        statement = (
            self._select_rfqs()
            .where(RFQTable.status.in_(list(OPEN_STATES)))
            .where(RFQTable.expires_at.is_not(None))
            .where(RFQTable.expires_at <= now)
            .order_by(RFQTable.expires_at)
            .limit(limit)
        )
        result = await self.session.execute(statement)
        rfqs = [_to_domain(db_rfq) for db_rfq in result.scalars().all()]
        logger.debug(f"Found {len(rfqs)} expirable RFQs at {now.isoformat()}")
        return rfqs

    async def transition_rfq(
        self, rfq_id: str, expected: RFQStatus, target: RFQStatus, updated_at: datetime
    ) -> bool:
        statement = (
            update(RFQTable)
            .where(RFQTable.id == rfq_id)
            .where(RFQTable.status == expected)
            .values(status=target, updated_at=updated_at)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(statement)
        if result.rowcount != 1:
            logger.warning(f"Conditional update {expected.value} -> {target.value} matched no row for RFQ {rfq_id}")
            return False
        logger.info(f"RFQ {rfq_id} status updated/flushed {expected.value} -> {target.value}")
        # No commit here
        return True

    async def attach_quote(self, rfq_id: str, supplier_id: str, quote: SubmitQuote, submitted_at: datetime) -> None:
        logger.info(f"Attaching quote from supplier {supplier_id} to RFQ {rfq_id}")
        db_quote = QuoteTable(
            rfq_id=rfq_id,
            supplier_id=supplier_id,
            price=quote.price,
            currency=quote.currency,
            terms=quote.terms,
            valid_until=quote.validUntil,
            submitted_at=submitted_at,
        )
        self.session.add(db_quote)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise ConflictError("RFQ already has a quote", rfq_id=rfq_id) from e
        logger.info(f"Quote added/flushed for RFQ {rfq_id}, new Quote ID: {db_quote.id}")
