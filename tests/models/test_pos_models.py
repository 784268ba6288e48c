import pytest

from hare_pos.models.pos_models import (
    CartItem,
    Category,
    Channel,
    DrinkSubKey,
    Order,
    OrderItem,
    ProductKind,
    Shelf,
    deduction_kg,
)


@pytest.mark.parametrize("shelf, category, sub_key, kind", [
    (Shelf.ESPRESSO, Category.DRINKS, DrinkSubKey.ESPRESSO, ProductKind.DRINK),
    (Shelf.SINGLE_ORIGIN, Category.DRINKS, DrinkSubKey.SINGLE_ORIGIN, ProductKind.DRINK),
    (Shelf.BEANS, Category.BEANS, None, ProductKind.BEAN),
])
def test_shelf_parts(shelf, category, sub_key, kind):
    assert shelf.category is category
    assert shelf.sub_key is sub_key
    assert shelf.kind is kind
    assert Shelf.from_parts(category, sub_key) is shelf


def test_deduction_formulas():
    assert deduction_kg(ProductKind.DRINK, 10, usage_per_cup=0.02) == pytest.approx(0.2)
    # Missing usage falls back to the default per-cup usage
    assert deduction_kg(ProductKind.DRINK, 1, usage_per_cup=None) == pytest.approx(0.02)
    assert deduction_kg(ProductKind.BEAN, 5, grams=250) == pytest.approx(1.25)
    assert deduction_kg(ProductKind.BEAN, -3, grams=250) == 0


def test_order_item_recomputes_its_deduction():
    bean = OrderItem.model_validate({"id": "b", "qty": 2, "category": "HandDrip", "grams": 500})
    drink = OrderItem.model_validate({"id": "d", "qty": 3, "category": "drinks", "subKey": "singleOrigin",
                                      "usagePerCup": 0.018})

    assert bean.shelf is Shelf.BEANS
    assert bean.deduction_kg() == pytest.approx(1.0)
    assert drink.shelf is Shelf.SINGLE_ORIGIN
    assert drink.deduction_kg() == pytest.approx(0.054)


def test_order_coerces_loose_fields():
    order = Order.model_validate({
        "id": "o1",
        "createdAt": "2024-05-01T10:00:00.000Z",
        "total": "abc",
        "voided": 1,
        "channel": "carrier-pigeon",
        "deliveryFee": None,
        "delivery": {"customer_name": "Ana", "floor": 3},
    })

    assert order.total == 0
    assert order.voided is True
    assert order.channel is Channel.IN_STORE
    assert order.delivery.model_dump()["floor"] == 3
    assert order.created_datetime.year == 2024
    assert Order(id="o2", created_at="whenever").created_datetime is None


def test_cart_item_key():
    assert CartItem(id="eth", shelf=Shelf.BEANS, grams=250).key == "HandDrip|eth|250"
    assert CartItem(id="latte", shelf="espresso").key == "espresso|latte|0"
