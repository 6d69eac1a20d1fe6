from decimal import Decimal

import pytest
from orders.splitting import ValidatedLine, from_cents, split_by_seller, to_cents

ORDER_FIELDS = {"buyer_id": 1, "delivery_address": "Calle 10 # 5-20", "payment_method": "cash", "notes": "hi"}


def _line(product_id, seller_id, quantity, cents):
    return ValidatedLine(
        product_id=product_id, seller_id=seller_id, title=f"p{product_id}", quantity=quantity, unit_price_cents=cents
    )


@pytest.mark.parametrize(
    "amount,cents",
    [(Decimal("10.00"), 1000), (Decimal("0.1"), 10), (Decimal("19.995"), 2000), ("3.33", 333), (7, 700)],
)
def test_to_cents(amount, cents):
    assert to_cents(amount) == cents


def test_from_cents():
    assert from_cents(13993) == Decimal("139.93")
    assert from_cents(0) == Decimal("0.00")


def test_groups_sorted_by_seller_and_lines_by_product():
    lines = [_line(9, 30, 1, 100), _line(3, 10, 2, 250), _line(7, 30, 1, 999), _line(1, 10, 1, 5)]

    groups = split_by_seller(lines, **ORDER_FIELDS)

    assert [g.seller_id for g in groups] == [10, 30]
    assert [ln.product_id for ln in groups[0].lines] == [1, 3]
    assert [ln.product_id for ln in groups[1].lines] == [7, 9]
    assert groups[0].total_cents == 505
    assert groups[1].total_cents == 1099
    assert groups[1].total == Decimal("10.99")
    assert all(g.buyer_id == 1 and g.notes == "hi" and g.payment_method == "cash" for g in groups)


def test_split_is_deterministic_regardless_of_input_order():
    lines = [_line(i, i % 3, 1 + i % 4, 333 * i) for i in range(1, 12)]

    assert split_by_seller(lines, **ORDER_FIELDS) == split_by_seller(list(reversed(lines)), **ORDER_FIELDS)


def test_group_total_is_exact_sum_of_line_totals():
    lines = [_line(1, 5, 3, 10), _line(2, 5, 7, 1999), _line(3, 5, 9, 333)]

    (group,) = split_by_seller(lines, **ORDER_FIELDS)

    assert group.total == sum((ln.line_total for ln in group.lines), Decimal("0.00"))
    assert group.total == Decimal("170.20")


def test_empty_input_gives_no_groups():
    assert split_by_seller([], **ORDER_FIELDS) == ()
