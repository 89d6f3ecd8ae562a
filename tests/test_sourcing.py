"""Tests for low-stock draft quotation creation."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent))
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from quote_reconciler.db.repositories import audit_repo, quotation_repo
from quote_reconciler.models.quotation import QuotationStatus
from quote_reconciler.sourcing import LowStockRequest, StockLevel, SupplierRef, create_low_stock_quotation
from support import create_quotation, make_db


def _request(**stock) -> LowStockRequest:
    values = {"product_id": "p-acucar", "name": "Açúcar refinado", "package_quantity": 5, "min_stock": 10, "unit": "kg"}
    values.update(stock)
    return LowStockRequest(
        stock=StockLevel(**values),
        supplier=SupplierRef(id="s-1", name="Doce Vida", email="Vendas@DoceVida.com"),
    )


def test_stock_counts_packages():
    assert StockLevel(product_id="p", name="x", package_quantity=2.5, package_count=4).current_stock == 10
    assert StockLevel(product_id="p", name="x", package_quantity=3, package_count=None).current_stock == 3


def test_target_defaults_to_three_times_minimum():
    assert StockLevel(product_id="p", name="x", min_stock=10).target_stock == 30
    assert StockLevel(product_id="p", name="x", min_stock=10, max_stock=40).target_stock == 40


def test_creates_auto_generated_draft():
    db = make_db()
    result = create_low_stock_quotation(db, _request())

    assert result.created
    q = result.quotation
    assert q.status == QuotationStatus.DRAFT
    assert q.auto_generated
    assert q.supplier_email == "vendas@docevida.com"
    assert q.items[0].id == "p-acucar"
    assert q.items[0].quantity == 25
    entry = audit_repo.list_for_entity(db, q.id)[0]
    assert entry.action == audit_repo.ACTION_AUTO_CREATE
    assert entry.data["trigger"] == "LOW_STOCK"
    assert entry.data["quantityToOrder"] == 25


def test_stock_above_minimum_creates_nothing():
    db = make_db()
    result = create_low_stock_quotation(db, _request(package_quantity=11))
    assert not result.created
    assert result.reason == "stock_ok"


def test_stock_at_minimum_triggers():
    assert create_low_stock_quotation(make_db(), _request(package_quantity=10)).created


def test_unfinished_quotation_blocks_new_draft():
    db = make_db()
    existing = create_quotation(
        db,
        status=QuotationStatus.SENT,
        items=[{"id": "p-acucar", "name": "Açúcar refinado", "quantity": 20}],
    )
    result = create_low_stock_quotation(db, _request())
    assert not result.created
    assert result.reason == "open_quotation_exists"
    assert result.quotation.id == existing.id


def test_finished_quotation_does_not_block():
    db = make_db()
    q = create_quotation(db, items=[{"id": "p-acucar", "name": "Açúcar refinado", "quantity": 20}])
    quotation_repo.change_status(db, q.id, QuotationStatus.CANCELLED)
    assert create_low_stock_quotation(db, _request()).created


def test_supplier_without_email_is_skipped():
    db = make_db()
    request = _request()
    request.supplier = SupplierRef(id="s-1", name="Sem email")
    result = create_low_stock_quotation(db, request)
    assert not result.created
    assert result.reason == "no_supplier"
