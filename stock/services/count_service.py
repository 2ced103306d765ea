import logging
from typing import Dict, Any, List

from django.conf import settings
from django.db import transaction

from stock.models import Material, Product, StockCheckLog, StockCheckLogItem
from stock.services.base_service import (
    BaseService, success_response,
    ValidationError, NotFoundError,
    require_decimal,
)

logger = logging.getLogger(__name__)


class StockCheckService(BaseService):
    """Physical counts compared against the ledger. Recording a count never changes stock."""

    model = StockCheckLog

    @classmethod
    def serialize_item(cls, item: StockCheckLogItem) -> Dict[str, Any]:
        return {
            "id": item.id,
            "item_type": item.item_type,
            "ref_id": item.ref_id,
            "item_name": item.item_name,
            "supplier": item.supplier,
            "unit": item.unit,
            "expected_qty": str(item.expected_qty),
            "actual_qty": str(item.actual_qty),
            "discrepancy": str(item.discrepancy),
            "note": item.note,
        }

    @classmethod
    def serialize(cls, log: StockCheckLog, include_items: bool = False) -> Dict[str, Any]:
        data = {
            "id": log.id,
            "uuid": str(log.uuid),
            "performed_at": log.performed_at.isoformat(),
            "notes": log.notes,
            "items_checked": log.items_checked,
            "items_adjusted": log.items_adjusted,
        }
        if include_items:
            data["items"] = [cls.serialize_item(i) for i in log.items.all()]
        return data

    @classmethod
    def _lookup(cls, item_type: str, ref_id) -> Dict[str, Any]:
        if item_type == StockCheckLogItem.ItemType.MATERIAL:
            material = Material.objects.filter(id=ref_id).first()
            if not material:
                raise NotFoundError("Material", ref_id)
            return {
                "name": material.name,
                "supplier": material.supplier,
                "unit": material.base_unit,
                "stock": material.stock_quantity,
            }

        product = Product.objects.filter(id=ref_id).first()
        if not product:
            raise NotFoundError("Product", ref_id)
        return {
            "name": product.name,
            "supplier": product.supplier,
            "unit": "pcs",
            "stock": product.stock_quantity,
        }

    @classmethod
    def _build_item(cls, data: Dict[str, Any]) -> StockCheckLogItem:
        item_type = str(data.get("item_type") or "").upper()
        if item_type not in StockCheckLogItem.ItemType.values:
            raise ValidationError(
                f"Invalid item type. Valid: {StockCheckLogItem.ItemType.values}", "item_type"
            )
        ref_id = data.get("ref_id")
        try:
            ref_id = int(ref_id)
        except (TypeError, ValueError):
            raise ValidationError("ref_id must be an integer", "ref_id")

        current = cls._lookup(item_type, ref_id)
        actual = require_decimal(data.get("actual_qty"), "actual_qty", allow_zero=True)
        if data.get("expected_qty") in (None, ""):
            expected = current["stock"]
        else:
            expected = require_decimal(
                data["expected_qty"], "expected_qty", allow_zero=True, allow_negative=True
            )

        return StockCheckLogItem(
            item_type=item_type,
            ref_id=ref_id,
            item_name=data.get("item_name") or current["name"],
            supplier=data.get("supplier") or current["supplier"],
            unit=data.get("unit") or current["unit"],
            expected_qty=expected,
            actual_qty=actual,
            discrepancy=actual - expected,
            note=data.get("note") or "",
        )

    @classmethod
    @transaction.atomic
    def record(cls, items: List[Dict[str, Any]], notes: str = None) -> Dict[str, Any]:
        if not isinstance(items, list) or not items:
            raise ValidationError("At least one counted item is required", "items")

        log_items = [cls._build_item(data) for data in items]
        log = cls.model.objects.create(
            notes=notes or "",
            items_checked=len(log_items),
            items_adjusted=sum(1 for item in log_items if item.discrepancy != 0),
        )
        for item in log_items:
            item.log = log
        StockCheckLogItem.objects.bulk_create(log_items)

        if log.items_adjusted:
            logger.info(
                "Stock check %s: %d of %d items differ from the ledger",
                log.id, log.items_adjusted, log.items_checked,
            )
        return success_response({"stock_check": cls.serialize(log, include_items=True)},
                                "Stock check recorded")

    @classmethod
    def list(cls, limit: int = 20, offset: int = 0) -> Dict[str, Any]:
        limit = min(max(1, limit), settings.STOCK_MAX_PAGE_SIZE)
        offset = max(0, offset)
        queryset = cls.model.objects.order_by("-performed_at", "-id")
        logs = queryset[offset:offset + limit]
        return success_response({
            "stock_checks": [cls.serialize(log) for log in logs],
            "total": queryset.count(),
            "limit": limit,
            "offset": offset,
        })

    @classmethod
    def get_with_items(cls, log_id: int) -> Dict[str, Any]:
        log = cls.get_or_404(log_id)
        return success_response({"stock_check": cls.serialize(log, include_items=True)})

    @classmethod
    @transaction.atomic
    def delete(cls, log_id: int) -> Dict[str, Any]:
        log = cls.get_or_404(log_id)
        log.delete()
        return success_response({"deleted_id": log_id}, "Stock check deleted")

    @classmethod
    def item_history(cls, item_type: str, ref_id: int, limit: int = 50) -> Dict[str, Any]:
        item_type = str(item_type).upper()
        if item_type not in StockCheckLogItem.ItemType.values:
            raise ValidationError(
                f"Invalid item type. Valid: {StockCheckLogItem.ItemType.values}", "item_type"
            )
        rows = StockCheckLogItem.objects.filter(
            item_type=item_type, ref_id=ref_id
        ).select_related("log").order_by("-log__performed_at", "-id")[:max(1, limit)]

        return success_response({
            "item_type": item_type,
            "ref_id": ref_id,
            "history": [
                {**cls.serialize_item(row), "performed_at": row.log.performed_at.isoformat(),
                 "log_id": row.log_id}
                for row in rows
            ],
        })
