from decimal import Decimal

import pytest
from django.core.cache import cache

from stock.models import Material, Product, RecipeLine


@pytest.fixture(autouse=True)
def clear_cache():
    cache.clear()
    yield
    cache.clear()


def make_material(name, purchase_quantity, purchase_cost, stock="1000", threshold="100",
                  base_unit="g", supplier="Kopi Supplies", **extra):
    return Material.objects.create(
        name=name,
        purchase_unit=extra.pop("purchase_unit", "pack"),
        base_unit=base_unit,
        purchase_quantity=Decimal(purchase_quantity),
        purchase_cost=Decimal(purchase_cost),
        stock_quantity=Decimal(stock),
        low_stock_threshold=Decimal(threshold),
        supplier=supplier,
        **extra,
    )


def add_line(product, quantity, material=None, linked_product=None, role=RecipeLine.Role.BASE,
             slot_key="", option_key="", sort_order=0):
    return RecipeLine.objects.create(
        product=product,
        role=role,
        slot_key=slot_key,
        option_key=option_key,
        item_type=RecipeLine.ItemType.PRODUCT if linked_product else RecipeLine.ItemType.MATERIAL,
        material=material,
        linked_product=linked_product,
        quantity=Decimal(quantity),
        sort_order=sort_order,
    )


@pytest.fixture
def beans(db):
    # 1kg for 45.00 -> 0.045 per gram
    return make_material("Espresso Beans", "1000", "45.00")


@pytest.fixture
def milk(db):
    return make_material("Fresh Milk", "1000", "6.00", stock="5000", threshold="500", base_unit="ml")


@pytest.fixture
def oat_milk(db):
    return make_material("Oat Milk", "1000", "12.00", stock="2000", threshold="500", base_unit="ml")


@pytest.fixture
def cup(db):
    return make_material("Paper Cup 12oz", "50", "10.00", stock="200", threshold="50",
                         base_unit="pcs", category=Material.Category.PACKAGING,
                         supplier="Pack Co")


@pytest.fixture
def syrup(db):
    return make_material("Vanilla Syrup", "750", "30.00", stock="750", threshold="100", base_unit="ml")


@pytest.fixture
def latte(beans, milk, oat_milk, cup, syrup):
    """Latte: beans and cup always, milk slot (dairy | oat), optional vanilla shot."""
    product = Product.objects.create(
        name="Latte", sku="LAT-01", external_ref="wc-101", base_price=Decimal("12.90"),
    )
    add_line(product, "18", material=beans, sort_order=0)
    add_line(product, "1", material=cup, sort_order=1)
    add_line(product, "200", material=milk, role=RecipeLine.Role.MANDATORY,
             slot_key="milk", option_key="dairy", sort_order=2)
    add_line(product, "200", material=oat_milk, role=RecipeLine.Role.MANDATORY,
             slot_key="milk", option_key="oat", sort_order=3)
    add_line(product, "15", material=syrup, role=RecipeLine.Role.OPTIONAL,
             slot_key="extras", option_key="vanilla", sort_order=4)
    return product


@pytest.fixture
def espresso_shot(beans):
    product = Product.objects.create(name="Espresso Shot", sku="ESP-01")
    add_line(product, "18", material=beans)
    return product


@pytest.fixture
def double_bundle(espresso_shot, cup):
    """Uses the espresso shot as a sub-recipe twice plus a cup."""
    product = Product.objects.create(name="Double Espresso Bundle", sku="BDL-02")
    add_line(product, "2", linked_product=espresso_shot, sort_order=0)
    add_line(product, "1", material=cup, sort_order=1)
    return product


@pytest.fixture
def croissant(db):
    return Product.objects.create(
        name="Butter Croissant", sku="CRS-01", supplier="Bakery Bros",
        supplier_cost=Decimal("3.50"), base_price=Decimal("7.00"), manage_stock=True,
        stock_quantity=Decimal("4"),
    )
