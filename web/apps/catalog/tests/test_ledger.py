import logging

import pytest

from apps.catalog.ledger import InventoryLedger
from apps.orders.domain import ValidatedLine
from apps.orders.errors import ValidationError


def _line(product, key, qty):
    return ValidatedLine(product.id, product.name, key, qty, product.price)


@pytest.mark.django_db
def test_get_product_reads_variants(make_product):
    p = make_product(stock={"M": 3, "L": 0})
    record = InventoryLedger().get_product(p.id)
    assert record.name == "Mom Jean" and record.price == 1000 and record.active
    assert {k: v.stock for k, v in record.variants.items()} == {"M": 3, "L": 0}


@pytest.mark.django_db
def test_get_product_unknown():
    assert InventoryLedger().get_product(424242) is None


@pytest.mark.django_db
def test_decrement_and_restore(make_product, stock_of):
    p = make_product(stock={"M": 3})
    ledger = InventoryLedger()

    ledger.decrement([_line(p, "M", 2)])
    assert stock_of(p, "M") == 1

    ledger.restore([_line(p, "M", 2)])
    assert stock_of(p, "M") == 3


@pytest.mark.django_db
def test_decrement_is_all_or_nothing(make_product, stock_of):
    p = make_product(stock={"M": 3, "L": 1})

    with pytest.raises(ValidationError) as e:
        InventoryLedger().decrement([_line(p, "M", 2), _line(p, "L", 2)])

    assert e.value.code == "INSUFFICIENT_STOCK"
    assert e.value.data["variant"] == "L"
    assert stock_of(p, "M") == 3
    assert stock_of(p, "L") == 1


@pytest.mark.django_db
def test_repeated_lines_are_summed(make_product, stock_of):
    p = make_product(stock={"M": 3})
    with pytest.raises(ValidationError):
        InventoryLedger().decrement([_line(p, "M", 2), _line(p, "M", 2)])
    assert stock_of(p, "M") == 3


@pytest.mark.django_db
def test_never_below_zero(make_product, stock_of):
    p = make_product(stock={"M": 3})
    ledger = InventoryLedger()
    sold = 0
    for _ in range(5):
        try:
            ledger.decrement([_line(p, "M", 1)])
            sold += 1
        except ValidationError:
            pass
    assert sold == 3
    assert stock_of(p, "M") == 0


@pytest.mark.django_db
def test_restore_skips_deleted_variant(make_product, stock_of, caplog):
    caplog.set_level(logging.WARNING, logger="orders.ledger")
    p = make_product(stock={"M": 1})
    p.variants.filter(key="M").delete()

    InventoryLedger().restore([_line(p, "M", 2)])

    assert any(r.getMessage() == "stock.restore.variant_missing" for r in caplog.records)
