from decimal import Decimal

import pytest
from django.utils import timezone

from stock.models import MaterialMovement, Product, PurchaseOrder, PurchaseOrderItem
from stock.services import (
    InvalidStateError, NotFoundError, PurchaseOrderService, ValidationError,
)

pytestmark = pytest.mark.django_db


@pytest.fixture
def draft_po(beans, milk):
    result = PurchaseOrderService.create(
        supplier="Kopi Supplies",
        items=[
            {"item_type": "material", "material_id": beans.id, "quantity": "10", "unit_cost": "5.00"},
            {"item_type": "material", "material_id": milk.id, "quantity": "3", "unit_cost": "12.00"},
        ],
        expected_delivery_date="2026-11-02",
        notes="Deliver before 9am",
    )
    return PurchaseOrder.objects.get(id=result["purchase_order"]["id"])


def items_of(po):
    return list(po.items.values_list("item_name", "quantity"))


class TestCreate:
    def test_draft_with_sequential_number(self, draft_po, beans):
        month = timezone.localtime().strftime("%Y-%m")
        assert draft_po.status == PurchaseOrder.Status.DRAFT
        assert draft_po.po_number == f"PO-{month}-0001"

        second = PurchaseOrderService.create(
            supplier="Kopi Supplies",
            items=[{"item_type": "material", "material_id": beans.id, "quantity": "1"}],
        )
        assert second["purchase_order"]["po_number"] == f"PO-{month}-0002"

    def test_sequence_keeps_growing_past_four_digits(self):
        month = timezone.localtime().strftime("%Y-%m")
        for number in ("9999", "10000"):
            PurchaseOrder.objects.create(po_number=f"PO-{month}-{number}", supplier="Kopi Supplies")

        result = PurchaseOrderService.create(supplier="Kopi Supplies")

        assert result["purchase_order"]["po_number"] == f"PO-{month}-10001"

    def test_taken_number_is_retried(self, draft_po, monkeypatch):
        month = timezone.localtime().strftime("%Y-%m")
        numbers = iter([draft_po.po_number, f"PO-{month}-0002"])
        monkeypatch.setattr(PurchaseOrderService, "_next_po_number", classmethod(lambda cls: next(numbers)))

        result = PurchaseOrderService.create(supplier="Bean Hub")

        assert result["purchase_order"]["po_number"] == f"PO-{month}-0002"
        assert PurchaseOrder.objects.count() == 2

    def test_number_allocation_gives_up_with_a_typed_error(self, draft_po, monkeypatch):
        monkeypatch.setattr(PurchaseOrderService, "_next_po_number",
                            classmethod(lambda cls: draft_po.po_number))

        with pytest.raises(InvalidStateError):
            PurchaseOrderService.create(supplier="Bean Hub")
        assert PurchaseOrder.objects.count() == 1

    def test_total_is_sum_of_items(self, draft_po):
        assert draft_po.total_amount == Decimal("86.00")

    def test_unit_cost_defaults_to_material_cost(self, beans):
        result = PurchaseOrderService.create(
            supplier="Kopi Supplies",
            items=[{"item_type": "material", "material_id": beans.id, "quantity": "1000"}],
        )
        assert Decimal(result["purchase_order"]["total_amount"]) == Decimal("45")

    def test_supplier_required(self):
        with pytest.raises(ValidationError):
            PurchaseOrderService.create(supplier="  ")

    def test_invalid_item_type(self, beans):
        with pytest.raises(ValidationError):
            PurchaseOrderService.create(
                supplier="Kopi Supplies",
                items=[{"item_type": "service", "material_id": beans.id, "quantity": "1"}],
            )
        assert not PurchaseOrder.objects.exists()


class TestDraftOnlyMutation:
    def test_update_items_replaces_and_recomputes(self, draft_po, beans):
        PurchaseOrderService.update_items(draft_po.id, [
            {"item_type": "material", "material_id": beans.id, "quantity": "2", "unit_cost": "7.50"},
        ])

        draft_po.refresh_from_db()
        assert draft_po.total_amount == Decimal("15.00")
        assert items_of(draft_po) == [("Espresso Beans", Decimal("2"))]

    def test_update_items_on_ordered_is_rejected(self, draft_po, beans):
        PurchaseOrderService.mark_ordered(draft_po.id)
        before = items_of(draft_po)

        with pytest.raises(InvalidStateError):
            PurchaseOrderService.update_items(draft_po.id, [
                {"item_type": "material", "material_id": beans.id, "quantity": "99"},
            ])

        assert items_of(draft_po) == before

    def test_metadata_edit_on_ordered_is_rejected(self, draft_po):
        PurchaseOrderService.mark_ordered(draft_po.id)
        with pytest.raises(InvalidStateError):
            PurchaseOrderService.update_metadata(draft_po.id, notes="changed")

    def test_metadata_edit_on_draft(self, draft_po):
        PurchaseOrderService.update_metadata(draft_po.id, supplier="Bean Hub", expected_delivery_date="2026-11-05")
        draft_po.refresh_from_db()
        assert draft_po.supplier == "Bean Hub"
        assert draft_po.expected_delivery_date.isoformat() == "2026-11-05"

    def test_delete_draft(self, draft_po):
        PurchaseOrderService.delete(draft_po.id)
        assert not PurchaseOrder.objects.exists()
        assert not PurchaseOrderItem.objects.exists()

    def test_delete_ordered_is_rejected(self, draft_po):
        PurchaseOrderService.mark_ordered(draft_po.id)
        with pytest.raises(InvalidStateError):
            PurchaseOrderService.delete(draft_po.id)


class TestReceive:
    def test_credits_stock_once(self, draft_po, beans, milk):
        PurchaseOrderService.mark_ordered(draft_po.id)
        PurchaseOrderService.receive(draft_po.id)

        beans.refresh_from_db()
        milk.refresh_from_db()
        assert beans.stock_quantity == Decimal("1010")
        assert milk.stock_quantity == Decimal("5003")
        assert beans.last_purchase_date == timezone.localdate()

        draft_po.refresh_from_db()
        assert draft_po.status == PurchaseOrder.Status.RECEIVED
        assert draft_po.received_date is not None
        assert all(i.received_quantity == i.quantity for i in draft_po.items.all())

        movement = beans.movements.get()
        assert movement.reason == MaterialMovement.Reason.PURCHASE_RECEIPT
        assert movement.reference_id == draft_po.po_number

    def test_received_order_is_frozen(self, draft_po, beans):
        PurchaseOrderService.receive(draft_po.id)

        with pytest.raises(InvalidStateError):
            PurchaseOrderService.receive(draft_po.id)
        with pytest.raises(InvalidStateError):
            PurchaseOrderService.update_items(draft_po.id, [])
        with pytest.raises(InvalidStateError):
            PurchaseOrderService.delete(draft_po.id)
        with pytest.raises(InvalidStateError):
            PurchaseOrderService.update_metadata(draft_po.id, status="received")

        beans.refresh_from_db()
        assert beans.stock_quantity == Decimal("1010")

    def test_status_patch_to_received_goes_through_receive(self, draft_po, milk):
        result = PurchaseOrderService.update_metadata(draft_po.id, status="received")

        assert result["purchase_order"]["status"] == PurchaseOrder.Status.RECEIVED
        milk.refresh_from_db()
        assert milk.stock_quantity == Decimal("5003")

    def test_product_items_credit_product_stock(self, croissant):
        result = PurchaseOrderService.create(
            supplier="Bakery Bros",
            items=[{"item_type": "product", "product_id": croissant.id, "quantity": "24"}],
        )
        PurchaseOrderService.receive(result["purchase_order"]["id"])

        croissant.refresh_from_db()
        assert croissant.stock_quantity == Decimal("28")

    def test_cancelled_order_cannot_be_received(self, draft_po, beans):
        PurchaseOrderService.cancel(draft_po.id)

        with pytest.raises(InvalidStateError):
            PurchaseOrderService.receive(draft_po.id)
        with pytest.raises(InvalidStateError):
            PurchaseOrderService.mark_ordered(draft_po.id)

        beans.refresh_from_db()
        assert beans.stock_quantity == Decimal("1000")

    def test_empty_order_is_received_without_stock_changes(self, beans):
        result = PurchaseOrderService.create(supplier="Kopi Supplies")

        received = PurchaseOrderService.receive(result["purchase_order"]["id"])

        assert received["purchase_order"]["status"] == PurchaseOrder.Status.RECEIVED
        assert not MaterialMovement.objects.exists()

    def test_unknown_order(self):
        with pytest.raises(NotFoundError):
            PurchaseOrderService.receive(404)


class TestCsvExport:
    def test_rows_and_totals(self, draft_po):
        export = PurchaseOrderService.export_csv(draft_po.id)
        lines = export["content"].splitlines()

        assert export["filename"] == f"PO-{draft_po.po_number}.csv"
        assert lines[0] == (
            '"PO Number","Supplier","Status","Order Date","Expected Delivery","Item Type",'
            '"Item Name","SKU","Quantity","Unit","Unit Cost (RM)","Total Cost (RM)","Notes"'
        )
        assert lines[1].endswith('"material","Espresso Beans","","10","g","5.00","50.00",""')
        assert lines[2].endswith('"material","Fresh Milk","","3","ml","12.00","36.00",""')
        assert lines[3] == '"","","","","","","","","","","TOTAL:","RM 86.00",""'
        assert lines[4] == '"","","","","","","","","","","","",""'
        assert lines[5].startswith('"Notes:","Deliver before 9am",""')

    def test_quotes_are_doubled(self, beans):
        result = PurchaseOrderService.create(
            supplier='Joe\'s "Best" Beans',
            items=[{"item_type": "material", "material_id": beans.id, "quantity": "1.5", "unit_cost": "2"}],
        )
        export = PurchaseOrderService.export_csv(result["purchase_order"]["id"])

        assert '"Joe\'s ""Best"" Beans"' in export["content"]
        assert '"1.5"' in export["content"]
        assert "Notes:" not in export["content"]


class TestLookups:
    def test_suppliers_are_distinct_and_sorted(self, beans, milk, cup):
        PurchaseOrderService.create(supplier="Bakery Bros")
        assert PurchaseOrderService.list_suppliers()["suppliers"] == [
            "Bakery Bros", "Kopi Supplies", "Pack Co",
        ]

    def test_orderable_items(self, beans, croissant):
        Product.objects.create(name="Gift Card", manage_stock=False)

        items = PurchaseOrderService.list_orderable_items()["items"]

        assert {(i["item_type"], i["name"]) for i in items} == {
            ("MATERIAL", "Espresso Beans"), ("PRODUCT", "Butter Croissant"),
        }

    def test_list_by_status(self, draft_po, beans):
        other = PurchaseOrderService.create(supplier="Kopi Supplies")
        PurchaseOrderService.mark_ordered(other["purchase_order"]["id"])

        result = PurchaseOrderService.list(status="ordered")
        assert [po["id"] for po in result["purchase_orders"]] == [other["purchase_order"]["id"]]

    def test_get_by_number(self, draft_po):
        result = PurchaseOrderService.get_by_number(draft_po.po_number)
        assert result["purchase_order"]["id"] == draft_po.id
