import json
from decimal import Decimal

import pytest
from django.urls import reverse

from stock.models import Material, PurchaseOrder

pytestmark = pytest.mark.django_db

DAIRY = {"selected_mandatory": {"milk": "dairy"}}


def post_json(client, url, payload):
    return client.post(url, data=json.dumps(payload), content_type="application/json")


def put_json(client, url, payload):
    return client.put(url, data=json.dumps(payload), content_type="application/json")


class TestOrderConsumptionApi:
    def test_records_and_replays(self, client, latte, beans):
        payload = {
            "order_id": "W-1001",
            "line_items": [
                {"external_ref": "wc-101", "quantity": 2, "order_item_id": "55", "bundle_selection": DAIRY},
            ],
        }

        first = post_json(client, reverse("stock:order-consumption"), payload)
        second = post_json(client, reverse("stock:order-consumption"), payload)

        assert first.status_code == 201
        body = first.json()
        assert body["success"] is True
        assert len(body["line_items"][0]["consumptions"]) == 3
        assert second.json()["total_cogs"] == body["total_cogs"]
        assert Material.objects.get(id=beans.id).stock_quantity == Decimal("964")

    def test_missing_selection_is_422(self, client, latte):
        response = post_json(client, reverse("stock:order-consumption"), {
            "order_id": "W-1002",
            "line_items": [{"product_id": latte.id, "quantity": 1, "order_item_id": "1"}],
        })

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "MISSING_SELECTION"
        assert error["details"]["slot_id"] == "milk"

    def test_consumptions_listing_and_reversal(self, client, espresso_shot, beans):
        post_json(client, reverse("stock:order-consumption"), {
            "order_id": "W-1003",
            "line_items": [{"product_id": espresso_shot.id, "quantity": 1, "order_item_id": "1"}],
        })

        listing = client.get(reverse("stock:order-consumption-list", args=["W-1003"]))
        assert listing.json()["pagination"]["total_items"] == 1

        reverse_url = reverse("stock:order-item-reverse", args=["W-1003", "1"])
        assert client.post(reverse_url).status_code == 200
        assert client.post(reverse_url).status_code == 404
        assert Material.objects.get(id=beans.id).stock_quantity == Decimal("1000")


class TestMaterialApi:
    def test_create_and_fetch(self, client):
        response = post_json(client, reverse("stock:material-list"), {
            "name": "Matcha Powder", "purchase_quantity": "100", "purchase_cost": "25.00",
            "base_unit": "g", "low_stock_threshold": "20",
        })
        assert response.status_code == 201
        material_id = response.json()["material"]["id"]

        detail = client.get(reverse("stock:material-detail", args=[material_id]))
        assert detail.json()["material"]["cost_per_unit"] == "0.250000"

    def test_validation_error_names_the_field(self, client):
        response = post_json(client, reverse("stock:material-list"), {"name": ""})
        assert response.status_code == 400
        assert response.json()["error"]["details"]["field"] == "name"

    def test_unknown_material_is_404(self, client):
        response = client.get(reverse("stock:material-detail", args=[999]))
        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_bad_page_parameter(self, client):
        response = client.get(reverse("stock:material-list"), {"page": "two"})
        assert response.status_code == 400


class TestPurchaseOrderApi:
    def test_lifecycle(self, client, beans, milk):
        created = post_json(client, reverse("stock:po-list"), {
            "supplier": "Kopi Supplies",
            "items": [
                {"item_type": "material", "material_id": beans.id, "quantity": 10, "unit_cost": "5.00"},
                {"item_type": "material", "material_id": milk.id, "quantity": 3, "unit_cost": "12.00"},
            ],
        })
        assert created.status_code == 201
        po_id = created.json()["purchase_order"]["id"]

        csv_response = client.get(reverse("stock:po-csv", args=[po_id]))
        assert csv_response["Content-Type"].startswith("text/csv")
        assert "attachment;" in csv_response["Content-Disposition"]
        assert '"TOTAL:","RM 86.00"' in csv_response.content.decode()

        ordered = client.post(reverse("stock:po-action", args=[po_id, "order"]))
        assert ordered.json()["purchase_order"]["status"] == "ORDERED"

        locked = put_json(client, reverse("stock:po-items", args=[po_id]), {"items": []})
        assert locked.status_code == 409
        assert locked.json()["error"]["code"] == "INVALID_STATE"

        received = client.post(reverse("stock:po-action", args=[po_id, "receive"]))
        assert received.status_code == 200
        assert PurchaseOrder.objects.get(id=po_id).status == PurchaseOrder.Status.RECEIVED

        again = client.post(reverse("stock:po-action", args=[po_id, "receive"]))
        assert again.status_code == 409

    def test_patch_status(self, client, beans):
        created = post_json(client, reverse("stock:po-list"), {"supplier": "Kopi Supplies"})
        po_id = created.json()["purchase_order"]["id"]

        response = client.patch(
            reverse("stock:po-detail", args=[po_id]),
            data=json.dumps({"status": "cancelled"}),
            content_type="application/json",
        )

        assert response.json()["purchase_order"]["status"] == "CANCELLED"

    def test_patch_ignores_unknown_keys(self, client):
        created = post_json(client, reverse("stock:po-list"), {"supplier": "Kopi Supplies"})
        po_id = created.json()["purchase_order"]["id"]

        response = client.patch(
            reverse("stock:po-detail", args=[po_id]),
            data=json.dumps({"po_id": 999, "id": 999, "notes": "call ahead"}),
            content_type="application/json",
        )

        assert response.status_code == 200
        assert response.json()["purchase_order"]["notes"] == "call ahead"
        assert response.json()["purchase_order"]["id"] == po_id

    def test_unknown_action(self, client):
        created = post_json(client, reverse("stock:po-list"), {"supplier": "Kopi Supplies"})
        po_id = created.json()["purchase_order"]["id"]
        assert client.post(reverse("stock:po-action", args=[po_id, "approve"])).status_code == 400


class TestStockCheckApi:
    def test_record_and_history(self, client, beans):
        response = post_json(client, reverse("stock:stock-check-list"), {
            "items": [{"item_type": "material", "ref_id": beans.id, "actual_qty": "990"}],
            "notes": "spot check",
        })
        assert response.status_code == 201

        history = client.get(reverse("stock:stock-check-history", args=["material", beans.id]))
        assert Decimal(history.json()["history"][0]["discrepancy"]) == Decimal("-10")
