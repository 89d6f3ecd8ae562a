"""Low-stock sourcing: open a draft quotation when a product runs low.

Stock is counted as package quantity x package count. Nothing is created
while stock is above the minimum, while an unfinished quotation already
covers the product, or when the supplier has no email address to reply from.
"""

from typing import Literal, Optional

from pydantic import BaseModel, Field

from quote_reconciler.db import Database
from quote_reconciler.db.repositories import audit_repo, quotation_repo
from quote_reconciler.models.quotation import QuotationItem, QuotationRecord, QuotationStatus
from quote_reconciler.utils.logger import get_logger

logger = get_logger("quote_reconciler.sourcing")

# Statuses in which a quotation still covers its products.
UNFINISHED_STATUSES = (
    QuotationStatus.DRAFT,
    QuotationStatus.PENDING,
    QuotationStatus.SENT,
    QuotationStatus.AWAITING,
    QuotationStatus.QUOTED,
)

# Without an explicit maximum, restock up to this multiple of the minimum.
DEFAULT_MAX_STOCK_FACTOR = 3


class StockLevel(BaseModel):
    product_id: str
    name: str
    package_quantity: float = 0
    package_count: Optional[float] = 1
    min_stock: float = 0
    max_stock: Optional[float] = None
    unit: str = ""

    @property
    def current_stock(self) -> float:
        count = self.package_count if self.package_count is not None else 1
        return self.package_quantity * count

    @property
    def target_stock(self) -> float:
        if self.max_stock:
            return self.max_stock
        return self.min_stock * DEFAULT_MAX_STOCK_FACTOR


class SupplierRef(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None


class LowStockRequest(BaseModel):
    stock: StockLevel
    supplier: SupplierRef = Field(default_factory=SupplierRef)


SkipReason = Literal["stock_ok", "open_quotation_exists", "no_supplier"]


class LowStockResult(BaseModel):
    created: bool
    reason: Optional[SkipReason] = None
    quotation: Optional[QuotationRecord] = None


def create_low_stock_quotation(db: Database, request: LowStockRequest) -> LowStockResult:
    stock = request.stock
    supplier = request.supplier
    log = logger.bind(product_id=stock.product_id)
    current = stock.current_stock
    if current > stock.min_stock:
        log.debug("sourcing.stock_ok", current=current, min_stock=stock.min_stock)
        return LowStockResult(created=False, reason="stock_ok")

    existing = quotation_repo.find_with_item(db, stock.product_id, UNFINISHED_STATUSES)
    if existing is not None:
        log.info("sourcing.open_quotation_exists", quotation_id=existing.id, status=existing.status.value)
        return LowStockResult(created=False, reason="open_quotation_exists", quotation=existing)

    if not (supplier.email or "").strip():
        log.warning("sourcing.no_supplier", supplier_id=supplier.id)
        return LowStockResult(created=False, reason="no_supplier")

    target = stock.target_stock
    quantity = max(target - current, 0)
    item = QuotationItem(
        id=stock.product_id,
        name=stock.name,
        quantity=quantity,
        unit=stock.unit,
        current_stock=current,
        max_stock=target,
    )
    quotation = quotation_repo.create_quotation(
        db,
        supplier_id=supplier.id,
        supplier_name=supplier.name,
        supplier_email=supplier.email,
        items=[item],
        status=QuotationStatus.DRAFT,
        auto_generated=True,
        audit_action=audit_repo.ACTION_AUTO_CREATE,
        audit_data={
            "trigger": "LOW_STOCK",
            "productId": stock.product_id,
            "productName": stock.name,
            "currentStock": current,
            "minStock": stock.min_stock,
            "quantityToOrder": quantity,
        },
    )
    log.info("sourcing.quotation_created", quotation_id=quotation.id, quantity=quantity)
    return LowStockResult(created=True, quotation=quotation)
