import logging
from functools import partial
from typing import Dict, Any, Optional
from decimal import Decimal

from django.conf import settings
from django.core.cache import cache
from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone

from stock.models import Material, MaterialMovement, MaterialPriceHistory
from stock.services.base_service import (
    BaseService, success_response, paginate_queryset,
    ValidationError, NotFoundError,
    to_decimal, require_decimal,
)

logger = logging.getLogger(__name__)


class MaterialCostCache:
    """
    Read-through cache of Material.cost_per_unit.

    Both filling and invalidation wait for the surrounding transaction to
    commit, so a rolled back price change never reaches the cache.
    """

    key_prefix = "stock:material-cost"

    @classmethod
    def key(cls, material_id: int) -> str:
        return f"{cls.key_prefix}:{material_id}"

    @classmethod
    def get(cls, material_id: int) -> Optional[Decimal]:
        cached = cache.get(cls.key(material_id))
        if cached is not None:
            return Decimal(cached)

        value = Material.objects.filter(id=material_id).values_list(
            "cost_per_unit", flat=True
        ).first()
        if value is None:
            return None

        transaction.on_commit(partial(
            cache.set, cls.key(material_id), str(value), settings.STOCK_COST_CACHE_TIMEOUT
        ))
        return value

    @classmethod
    def invalidate(cls, material_id: int):
        transaction.on_commit(partial(cache.delete, cls.key(material_id)))


class MaterialService(BaseService):
    model = Material

    EDITABLE_FIELDS = [
        "name", "category", "purchase_unit", "base_unit", "purchase_quantity",
        "purchase_cost", "stock_quantity", "low_stock_threshold", "supplier",
        "last_purchase_date",
    ]

    @classmethod
    def serialize(cls, material: Material) -> Dict[str, Any]:
        return {
            "id": material.id,
            "uuid": str(material.uuid),
            "name": material.name,
            "category": material.category,
            "purchase_unit": material.purchase_unit,
            "base_unit": material.base_unit,
            "purchase_quantity": str(material.purchase_quantity),
            "purchase_cost": str(material.purchase_cost),
            "cost_per_unit": str(material.cost_per_unit),
            "stock_quantity": str(material.stock_quantity),
            "low_stock_threshold": str(material.low_stock_threshold),
            "is_low_stock": material.is_low_stock,
            "supplier": material.supplier,
            "last_purchase_date": material.last_purchase_date.isoformat() if material.last_purchase_date else None,
            "updated_at": material.updated_at.isoformat() if material.updated_at else None,
        }

    @classmethod
    def get_material(cls, material_id: int) -> Material:
        material = cls.get_by_id(material_id)
        if not material:
            raise NotFoundError("Material", material_id)
        return material

    @classmethod
    def list(cls,
             category: str = None,
             supplier: str = None,
             search: str = None,
             low_stock_only: bool = False,
             page: int = 1,
             per_page: int = 50) -> Dict[str, Any]:
        queryset = cls.model.objects.all()

        if category:
            queryset = queryset.filter(category=category.upper())
        if supplier:
            queryset = queryset.filter(supplier=supplier)
        if search:
            queryset = queryset.filter(Q(name__icontains=search) | Q(supplier__icontains=search))
        if low_stock_only:
            queryset = queryset.filter(stock_quantity__lte=F("low_stock_threshold"))

        items, pagination = paginate_queryset(queryset, page, per_page)
        return success_response({
            "materials": [cls.serialize(m) for m in items],
            "pagination": pagination,
        })

    @classmethod
    def get(cls, material_id: int) -> Dict[str, Any]:
        return success_response({"material": cls.serialize(cls.get_material(material_id))})

    @classmethod
    def clean(cls, data: Dict[str, Any], creating: bool) -> Dict[str, Any]:
        cleaned = {}
        for key in cls.EDITABLE_FIELDS:
            if key in data:
                cleaned[key] = data[key]

        if creating and not str(cleaned.get("name") or "").strip():
            raise ValidationError("Material name is required", "name")
        if "name" in cleaned:
            cleaned["name"] = str(cleaned["name"]).strip()
            if not cleaned["name"]:
                raise ValidationError("Material name cannot be empty", "name")

        if "category" in cleaned:
            category = str(cleaned["category"]).upper()
            if category not in Material.Category.values:
                raise ValidationError(
                    f"Invalid category. Valid: {Material.Category.values}", "category"
                )
            cleaned["category"] = category

        if "purchase_quantity" in cleaned:
            cleaned["purchase_quantity"] = require_decimal(
                cleaned["purchase_quantity"], "purchase_quantity"
            )
        if "purchase_cost" in cleaned:
            cleaned["purchase_cost"] = require_decimal(
                cleaned["purchase_cost"], "purchase_cost", allow_zero=True
            )
        if "low_stock_threshold" in cleaned:
            cleaned["low_stock_threshold"] = require_decimal(
                cleaned["low_stock_threshold"], "low_stock_threshold", allow_zero=True
            )
        if "stock_quantity" in cleaned:
            cleaned["stock_quantity"] = require_decimal(
                cleaned["stock_quantity"], "stock_quantity", allow_zero=True, allow_negative=True
            )
        if "supplier" in cleaned:
            cleaned["supplier"] = str(cleaned["supplier"] or "").strip()
        return cleaned

    @classmethod
    @transaction.atomic
    def upsert_material(cls, data: Dict[str, Any]) -> Material:
        """Create or update a material and keep its unit cost and price history current."""
        material_id = data.get("id")
        notes = data.get("price_notes", "")

        if material_id:
            material = cls.model.objects.select_for_update().filter(id=material_id).first()
            if not material:
                raise NotFoundError("Material", material_id)
            cleaned = cls.clean(data, creating=False)
            if "stock_quantity" in cleaned and cleaned["stock_quantity"] != material.stock_quantity:
                # Stock moves only through adjust_stock so it leaves a movement row
                delta = cleaned.pop("stock_quantity") - material.stock_quantity
                cls.adjust_stock(material.id, delta, MaterialMovement.Reason.MANUAL,
                                 reference_type="material_edit")
                material.refresh_from_db()
            else:
                cleaned.pop("stock_quantity", None)

            previous_cost = material.cost_per_unit
            for key, value in cleaned.items():
                setattr(material, key, value)
            material.save()
        else:
            cleaned = cls.clean(data, creating=True)
            previous_cost = None
            material = cls.model.objects.create(**cleaned)

        if material.cost_per_unit != previous_cost and material.purchase_cost > 0:
            MaterialPriceHistory.objects.create(
                material=material,
                purchase_quantity=material.purchase_quantity,
                purchase_cost=material.purchase_cost,
                cost_per_unit=material.cost_per_unit,
                previous_cost_per_unit=previous_cost,
                notes=notes or "",
            )
            logger.info(
                "Material %s cost per %s changed %s -> %s",
                material.name, material.base_unit, previous_cost, material.cost_per_unit,
            )

        MaterialCostCache.invalidate(material.id)

        if previous_cost is not None and material.cost_per_unit != previous_cost:
            from .product_service import ProductService
            ProductService.refresh_unit_costs_for_material(material.id)
        return material

    @classmethod
    def create(cls, **data) -> Dict[str, Any]:
        data.pop("id", None)
        material = cls.upsert_material(data)
        return success_response({"material": cls.serialize(material)}, "Material created")

    @classmethod
    def update(cls, material_id: int, **data) -> Dict[str, Any]:
        data["id"] = material_id
        material = cls.upsert_material(data)
        return success_response({"material": cls.serialize(material)}, "Material updated")

    @classmethod
    def update_price(cls,
                     material_id: int,
                     purchase_quantity: Decimal,
                     purchase_cost: Decimal,
                     notes: str = "") -> Dict[str, Any]:
        material = cls.upsert_material({
            "id": material_id,
            "purchase_quantity": purchase_quantity,
            "purchase_cost": purchase_cost,
            "price_notes": notes,
        })
        return success_response({"material": cls.serialize(material)}, "Price updated")

    @classmethod
    @transaction.atomic
    def delete(cls, material_id: int) -> Dict[str, Any]:
        material = cls.get_material(material_id)
        name = material.name
        material.delete()
        MaterialCostCache.invalidate(material_id)
        logger.info("Material %s (%s) deleted", material_id, name)
        return success_response({"deleted_id": material_id}, f"Material '{name}' deleted")

    @classmethod
    @transaction.atomic
    def adjust_stock(cls,
                     material_id: int,
                     delta: Decimal,
                     reason: str,
                     reference_type: str = "",
                     reference_id: Any = "") -> Decimal:
        """
        Apply a signed quantity change to a material's stock and return the new quantity.

        Going below zero is allowed; it is logged, never rejected.
        """
        if reason not in MaterialMovement.Reason.values:
            raise ValidationError(
                f"Invalid reason. Valid: {MaterialMovement.Reason.values}", "reason"
            )
        delta = to_decimal(delta)

        material = cls.model.objects.select_for_update().filter(id=material_id).first()
        if not material:
            raise NotFoundError("Material", material_id)

        cls.model.objects.filter(id=material_id).update(
            stock_quantity=F("stock_quantity") + delta,
            updated_at=timezone.now(),
        )
        new_quantity = cls.model.objects.values_list("stock_quantity", flat=True).get(id=material_id)
        quantity_before = new_quantity - delta

        MaterialMovement.objects.create(
            material_id=material_id,
            reason=reason,
            delta=delta,
            quantity_before=quantity_before,
            quantity_after=new_quantity,
            reference_type=reference_type or "",
            reference_id=str(reference_id or ""),
        )

        if new_quantity < 0:
            logger.warning(
                "Material %s (%s) is backordered: stock %s %s after %s",
                material.name, material_id, new_quantity, material.base_unit, reason,
            )
        elif new_quantity < material.low_stock_threshold:
            logger.warning(
                "Low stock: %s (%s) at %s %s, threshold %s",
                material.name, material_id, new_quantity, material.base_unit,
                material.low_stock_threshold,
            )

        return new_quantity

    @classmethod
    def low_stock(cls) -> Dict[str, Any]:
        materials = cls.model.objects.filter(
            stock_quantity__lte=F("low_stock_threshold")
        ).order_by("stock_quantity", "name")
        return success_response({
            "materials": [cls.serialize(m) for m in materials],
            "count": len(materials),
        })

    @classmethod
    def price_history(cls, material_id: int, limit: int = 20) -> Dict[str, Any]:
        material = cls.get_material(material_id)
        history = material.price_history.all()[:max(1, limit)]
        return success_response({
            "material_id": material.id,
            "material_name": material.name,
            "history": [
                {
                    "id": h.id,
                    "purchase_quantity": str(h.purchase_quantity),
                    "purchase_cost": str(h.purchase_cost),
                    "cost_per_unit": str(h.cost_per_unit),
                    "previous_cost_per_unit": str(h.previous_cost_per_unit) if h.previous_cost_per_unit is not None else None,
                    "effective_date": h.effective_date.isoformat(),
                    "notes": h.notes,
                }
                for h in history
            ],
        })

    @classmethod
    def movements(cls, material_id: int, page: int = 1, per_page: int = 50) -> Dict[str, Any]:
        material = cls.get_material(material_id)
        items, pagination = paginate_queryset(material.movements.all(), page, per_page)
        return success_response({
            "material_id": material.id,
            "movements": [
                {
                    "id": m.id,
                    "reason": m.reason,
                    "delta": str(m.delta),
                    "quantity_before": str(m.quantity_before),
                    "quantity_after": str(m.quantity_after),
                    "reference_type": m.reference_type,
                    "reference_id": m.reference_id,
                    "created_at": m.created_at.isoformat(),
                }
                for m in items
            ],
            "pagination": pagination,
        })
