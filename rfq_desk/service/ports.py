from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, List, Optional

from rfq_desk.models import Actor, ProductSnapshot, RFQ, RFQItem, RFQTransition, SubmitQuote # Pydantic models for data transfer
from shared.models_db import RFQStatus

class AbstractRepository(ABC):
    """Abstract interface for RFQ persistence operations."""

    @abstractmethod
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
        """Saves a new pending RFQ and its item snapshots."""
        raise NotImplementedError

    @abstractmethod
    async def get_rfq_by_id(self, rfq_id: str) -> Optional[RFQ]:
        """Retrieves an RFQ by its ID."""
        raise NotImplementedError

    @abstractmethod
    async def get_rfq_by_number(self, rfq_number: str) -> Optional[RFQ]:
        """Retrieves an RFQ by its human-readable reference."""
        raise NotImplementedError

    @abstractmethod
    async def rfq_number_exists(self, rfq_number: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def list_rfqs(self, status: Optional[RFQStatus] = None, user_id: Optional[str] = None) -> List[RFQ]:
        """Lists RFQs newest first, optionally filtered by status and owner."""
        raise NotImplementedError

    @abstractmethod
    async def find_expirable(self, now: datetime, limit: int) -> List[RFQ]:
        """RFQs still open (pending/quoted) whose expires_at is at or before now."""
        raise NotImplementedError

    @abstractmethod
    async def transition_rfq(
        self, rfq_id: str, expected: RFQStatus, target: RFQStatus, updated_at: datetime
    ) -> bool:
        """
        Moves an RFQ from expected to target only if its stored status is still expected.
        Returns False when no row matched, i.e. someone else changed it first.
        """
        raise NotImplementedError

    @abstractmethod
    async def attach_quote(self, rfq_id: str, supplier_id: str, quote: SubmitQuote, submitted_at: datetime) -> None:
        """Stores the supplier's quote payload against an RFQ."""
        raise NotImplementedError


class AbstractCatalog(ABC):
    """Read access to the product catalog for snapshotting at RFQ creation."""

    @abstractmethod
    async def get_product(self, product_id: str) -> Optional[ProductSnapshot]:
        raise NotImplementedError


class AbstractIdentityProvider(ABC):
    """Resolves a bearer token to the authenticated actor."""

    @abstractmethod
    def resolve(self, token: str) -> Optional[Actor]:
        raise NotImplementedError


class AbstractNotifier(ABC):
    """Receives each committed lifecycle transition exactly once."""

    @abstractmethod
    async def rfq_transitioned(self, transition: RFQTransition) -> Any:
        raise NotImplementedError
