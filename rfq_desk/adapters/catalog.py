from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from rfq_desk.models import ProductSnapshot
from rfq_desk.service.ports import AbstractCatalog
from shared.models_db import ProductTable
from shared.logging import get_logger

logger = get_logger(__name__)


class SQLModelCatalog(AbstractCatalog):
    """Product lookups against the storefront's product table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_product(self, product_id: str) -> Optional[ProductSnapshot]:
        product = await self.session.get(ProductTable, product_id)
        if product is None or not product.is_active:
            logger.debug(f"Product {product_id} not found or inactive")
            return None
        return ProductSnapshot(
            productId=product.id, name=product.name, image=product.image_url, unitPrice=product.wholesale_price
        )

    async def add_product(
        self,
        product_id: str,
        name: str,
        image_url: Optional[str] = None,
        wholesale_price: Optional[float] = None,
        is_active: bool = True,
    ) -> ProductTable:
        """Inserts or replaces a product row. Used for seeding; the storefront owns real edits."""
        product = await self.session.get(ProductTable, product_id)
        if product is None:
            product = ProductTable(id=product_id, name=name)
        product.name = name
        product.image_url = image_url
        product.wholesale_price = wholesale_price
        product.is_active = is_active
        self.session.add(product)
        await self.session.flush()
        logger.info(f"Catalog product {product_id} stored")
        return product
