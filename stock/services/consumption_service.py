import logging
from typing import Dict, Any, List
from decimal import Decimal
from datetime import date

from django.db import IntegrityError, transaction
from django.db.models import Sum

from stock.models import InventoryConsumption, Material, MaterialMovement
from stock.services.base_service import (
    BaseService, success_response, paginate_queryset,
    ValidationError, NotFoundError, DataConsistencyError,
    require_decimal, round_decimal,
)
from stock.services.material_service import MaterialService
from stock.services.product_service import ProductService
from stock.services.recipe_service import RecipeService

logger = logging.getLogger(__name__)


class ConsumptionService(BaseService):
    model = InventoryConsumption

    @classmethod
    def serialize(cls, row: InventoryConsumption) -> Dict[str, Any]:
        return {
            "id": row.id,
            "uuid": str(row.uuid),
            "order_id": row.order_id,
            "order_item_id": row.order_item_id,
            "product_id": row.product_id,
            "product_name": row.product_name,
            "material_id": row.material_id,
            "material_name": row.material_name,
            "quantity_sold": str(row.quantity_sold),
            "quantity_consumed": str(row.quantity_consumed),
            "unit": row.unit,
            "unit_cost_snapshot": str(row.unit_cost_snapshot),
            "total_cost": str(row.total_cost),
            "consumed_at": row.consumed_at.isoformat(),
        }

    @classmethod
    def _existing(cls, order_id: str, order_item_id: str) -> List[InventoryConsumption]:
        return list(
            cls.model.objects.filter(order_id=order_id, order_item_id=order_item_id).order_by("id")
        )

    @staticmethod
    def cogs(rows: List[InventoryConsumption]) -> Decimal:
        return sum((row.total_cost for row in rows), Decimal("0"))

    @classmethod
    def record_sale(cls,
                    order_id: str,
                    product_id: int,
                    product_name: str,
                    quantity_sold: Decimal,
                    order_item_id: str,
                    selection=None) -> List[InventoryConsumption]:
        """
        Debit the materials behind one sold line item and write its cost ledger rows.

        Replaying the same (order_id, order_item_id) returns the rows written
        the first time and does not touch stock again.
        """
        if order_id in (None, ""):
            raise ValidationError("order_id is required", "order_id")
        if order_item_id in (None, ""):
            raise ValidationError("order_item_id is required", "order_item_id")
        order_id, order_item_id = str(order_id), str(order_item_id)

        existing = cls._existing(order_id, order_item_id)
        if existing:
            logger.debug("Consumption for %s/%s already recorded", order_id, order_item_id)
            return existing

        quantity_sold = require_decimal(quantity_sold, "quantity")
        product = ProductService.get_product(product_id)
        product_name = product_name or product.name

        try:
            resolved = RecipeService.resolve(product.id, quantity_sold, selection)
        except DataConsistencyError as e:
            logger.error(
                "Cannot resolve recipe for %s (order %s item %s): %s",
                product_name, order_id, order_item_id, e.message,
                extra={"details": e.details},
            )
            raise

        if not resolved:
            logger.info("No recipe lines for %s, nothing consumed for %s/%s",
                        product_name, order_id, order_item_id)
            return []

        try:
            with transaction.atomic():
                rows = cls._apply(order_id, order_item_id, product, product_name,
                                  quantity_sold, resolved)
        except IntegrityError:
            # Lost a race with a concurrent recording of the same line item
            logger.info("Duplicate consumption for %s/%s, returning stored rows",
                        order_id, order_item_id)
            return cls._existing(order_id, order_item_id)

        logger.info(
            "Recorded %d consumption rows for %s/%s (%s x %s), COGS %s",
            len(rows), order_id, order_item_id, product_name, quantity_sold, cls.cogs(rows),
        )
        return rows

    @classmethod
    def _apply(cls, order_id, order_item_id, product, product_name,
               quantity_sold, resolved) -> List[InventoryConsumption]:
        material_ids = sorted(material_id for material_id, _ in resolved)
        locked = {
            m.id: m
            for m in Material.objects.select_for_update().filter(id__in=material_ids).order_by("id")
        }

        rows = []
        for material_id, quantity in resolved:
            material = locked.get(material_id)
            if material is None:
                raise DataConsistencyError(
                    f"Material {material_id} disappeared while recording a sale",
                    {"material_id": material_id},
                )

            snapshot = material.cost_per_unit
            MaterialService.adjust_stock(
                material_id, -quantity, MaterialMovement.Reason.SALE,
                reference_type="order_item", reference_id=f"{order_id}/{order_item_id}",
            )
            rows.append(cls.model.objects.create(
                order_id=order_id,
                order_item_id=order_item_id,
                product=product,
                product_name=product_name,
                material=material,
                material_name=material.name,
                quantity_sold=quantity_sold,
                quantity_consumed=quantity,
                unit=material.base_unit,
                unit_cost_snapshot=snapshot,
                total_cost=round_decimal(quantity * snapshot),
            ))
        return rows

    @classmethod
    def _product_for_line(cls, line: Dict[str, Any]):
        if line.get("product_id"):
            return ProductService.get_product(line["product_id"])
        if line.get("external_ref"):
            return ProductService.get_by_external_ref(line["external_ref"])
        raise ValidationError("Each line item needs product_id or external_ref", "product_id")

    @classmethod
    @transaction.atomic
    def record_order(cls, order_id: str, line_items: List[Dict[str, Any]]) -> Dict[str, Any]:
        if not isinstance(line_items, list) or not line_items:
            raise ValidationError("line_items must be a non-empty list", "line_items")

        results = []
        total_cogs = Decimal("0")
        for line in line_items:
            product = cls._product_for_line(line)
            rows = cls.record_sale(
                order_id=order_id,
                product_id=product.id,
                product_name=line.get("product_name") or product.name,
                quantity_sold=line.get("quantity", 1),
                order_item_id=line.get("order_item_id"),
                selection=line.get("bundle_selection"),
            )
            line_cogs = cls.cogs(rows)
            total_cogs += line_cogs
            results.append({
                "order_item_id": str(line.get("order_item_id")),
                "product_id": product.id,
                "consumptions": [cls.serialize(r) for r in rows],
                "cogs": str(line_cogs),
            })

        return success_response({
            "order_id": str(order_id),
            "line_items": results,
            "total_cogs": str(total_cogs),
        }, "Consumption recorded")

    @classmethod
    @transaction.atomic
    def reverse_line_item(cls, order_id: str, order_item_id: str) -> Dict[str, Any]:
        """Administrative correction: put the stock back and drop the ledger rows of one line item."""
        rows = list(
            cls.model.objects.select_for_update()
            .filter(order_id=str(order_id), order_item_id=str(order_item_id))
            .order_by("material_id")
        )
        if not rows:
            raise NotFoundError("Consumption", f"{order_id}/{order_item_id}")

        restored = []
        for row in rows:
            if row.material_id is None:
                continue
            new_quantity = MaterialService.adjust_stock(
                row.material_id, row.quantity_consumed, MaterialMovement.Reason.CORRECTION,
                reference_type="order_item", reference_id=f"{order_id}/{order_item_id}",
            )
            restored.append({
                "material_id": row.material_id,
                "material_name": row.material_name,
                "quantity": str(row.quantity_consumed),
                "stock_quantity": str(new_quantity),
            })

        cls.model.objects.filter(id__in=[r.id for r in rows]).delete()
        logger.info("Reversed %d consumption rows for %s/%s", len(rows), order_id, order_item_id)
        return success_response({
            "order_id": str(order_id),
            "order_item_id": str(order_item_id),
            "reversed": len(rows),
            "restored": restored,
        }, "Consumption reversed")

    @classmethod
    def by_order(cls, order_id: str, page: int = 1, per_page: int = 50) -> Dict[str, Any]:
        queryset = cls.model.objects.filter(order_id=str(order_id)).order_by("-consumed_at", "-id")
        total_cogs = queryset.aggregate(total=Sum("total_cost"))["total"] or Decimal("0")
        items, pagination = paginate_queryset(queryset, page, per_page)
        return success_response({
            "order_id": str(order_id),
            "consumptions": [cls.serialize(r) for r in items],
            "total_cogs": str(total_cogs),
            "pagination": pagination,
        })

    @classmethod
    def by_material(cls,
                    material_id: int,
                    date_from: date = None,
                    date_to: date = None,
                    page: int = 1,
                    per_page: int = 50) -> Dict[str, Any]:
        material = MaterialService.get_material(material_id)
        queryset = cls.model.objects.filter(material=material).order_by("-consumed_at", "-id")
        if date_from:
            queryset = queryset.filter(consumed_at__date__gte=date_from)
        if date_to:
            queryset = queryset.filter(consumed_at__date__lte=date_to)

        totals = queryset.aggregate(quantity=Sum("quantity_consumed"), cost=Sum("total_cost"))
        items, pagination = paginate_queryset(queryset, page, per_page)
        return success_response({
            "material_id": material.id,
            "material_name": material.name,
            "consumptions": [cls.serialize(r) for r in items],
            "total_quantity": str(totals["quantity"] or Decimal("0")),
            "total_cost": str(totals["cost"] or Decimal("0")),
            "pagination": pagination,
        })
