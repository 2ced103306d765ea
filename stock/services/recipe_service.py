import logging
from typing import Dict, Any, List, Tuple
from decimal import Decimal

from django.db import transaction

from stock.models import Material, Product, RecipeLine
from stock.services.base_service import (
    BaseService, success_response,
    ValidationError, NotFoundError,
    require_decimal,
)
from stock.services.resolution import (
    Base, MandatorySlot, OptionalGroup,
    MaterialTarget, SubRecipeTarget,
    LineSpec, BundleSelection, resolve_lines,
)

logger = logging.getLogger(__name__)


def to_line_spec(line: RecipeLine) -> LineSpec:
    if line.role == RecipeLine.Role.MANDATORY:
        role = MandatorySlot(line.slot_key)
    elif line.role == RecipeLine.Role.OPTIONAL:
        role = OptionalGroup(line.slot_key)
    else:
        role = Base()

    if line.item_type == RecipeLine.ItemType.PRODUCT:
        target = SubRecipeTarget(line.linked_product_id)
    else:
        target = MaterialTarget(line.material_id)

    return LineSpec(
        role=role,
        target=target,
        quantity=line.quantity,
        option_id=line.option_key or None,
        line_id=line.id,
    )


class RecipeService(BaseService):
    model = RecipeLine

    @classmethod
    def serialize_line(cls, line: RecipeLine) -> Dict[str, Any]:
        return {
            "id": line.id,
            "role": line.role,
            "slot_key": line.slot_key,
            "option_key": line.option_key,
            "option_label": line.option_label,
            "item_type": line.item_type,
            "material_id": line.material_id,
            "material_name": line.material.name if line.material else None,
            "linked_product_id": line.linked_product_id,
            "linked_product_name": line.linked_product.name if line.linked_product else None,
            "quantity": str(line.quantity),
            "unit": line.unit,
            "sort_order": line.sort_order,
        }

    @classmethod
    def _get_product(cls, product_id: int) -> Product:
        try:
            return Product.objects.get(id=product_id)
        except (Product.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Product", product_id)

    @classmethod
    def line_specs(cls, product_id: int) -> List[LineSpec]:
        lines = cls.model.objects.filter(product_id=product_id).order_by("sort_order", "id")
        return [to_line_spec(line) for line in lines]

    @classmethod
    def resolve(cls,
                product_id: int,
                quantity_sold: Decimal,
                selection=None) -> List[Tuple[int, Decimal]]:
        """Flatten a sold product (and its bundle choices) into material quantities."""
        cls._get_product(product_id)
        return resolve_lines(
            cls.line_specs(product_id),
            quantity_sold,
            BundleSelection.from_dict(selection),
            load_sub_recipe=cls.line_specs,
            material_exists=lambda material_id: Material.objects.filter(id=material_id).exists(),
        )

    @classmethod
    def dry_run(cls, product_id: int, quantity: Decimal = 1, selection=None) -> Dict[str, Any]:
        quantity = require_decimal(quantity, "quantity")
        resolved = cls.resolve(product_id, quantity, selection)
        materials = Material.objects.in_bulk([material_id for material_id, _ in resolved])
        return success_response({
            "product_id": product_id,
            "quantity": str(quantity),
            "materials": [
                {
                    "material_id": material_id,
                    "material_name": materials[material_id].name,
                    "unit": materials[material_id].base_unit,
                    "quantity": str(qty),
                }
                for material_id, qty in resolved
            ],
        })

    @classmethod
    def get_recipe(cls, product_id: int) -> Dict[str, Any]:
        product = cls._get_product(product_id)
        lines = cls.model.objects.filter(product=product).select_related(
            "material", "linked_product"
        )

        base, slots, optional = [], {}, {}
        for line in lines:
            data = cls.serialize_line(line)
            if line.role == RecipeLine.Role.MANDATORY:
                slots.setdefault(line.slot_key, []).append(data)
            elif line.role == RecipeLine.Role.OPTIONAL:
                optional.setdefault(line.slot_key, []).append(data)
            else:
                base.append(data)

        return success_response({
            "product_id": product.id,
            "product_name": product.name,
            "base": base,
            "mandatory_slots": [{"slot_key": k, "lines": v} for k, v in slots.items()],
            "optional_groups": [{"group_key": k, "lines": v} for k, v in optional.items()],
        })

    @classmethod
    def _build_line(cls, product: Product, data: Dict[str, Any], index: int) -> RecipeLine:
        role = str(data.get("role") or RecipeLine.Role.BASE).upper()
        if role not in RecipeLine.Role.values:
            raise ValidationError(f"Invalid role. Valid: {RecipeLine.Role.values}", "role")

        slot_key = str(data.get("slot_key") or "").strip()
        option_key = str(data.get("option_key") or "").strip()
        if role != RecipeLine.Role.BASE and not (slot_key and option_key):
            raise ValidationError(
                f"{role.lower()} lines need both slot_key and option_key", "slot_key"
            )

        item_type = str(data.get("item_type") or RecipeLine.ItemType.MATERIAL).upper()
        if item_type not in RecipeLine.ItemType.values:
            raise ValidationError(f"Invalid item type. Valid: {RecipeLine.ItemType.values}", "item_type")

        material = linked_product = None
        if item_type == RecipeLine.ItemType.MATERIAL:
            material = Material.objects.filter(id=data.get("material_id")).first() if data.get("material_id") else None
            if not material:
                raise NotFoundError("Material", data.get("material_id"))
        else:
            linked_product = Product.objects.filter(id=data.get("linked_product_id")).first() if data.get("linked_product_id") else None
            if not linked_product:
                raise NotFoundError("Product", data.get("linked_product_id"))
            if linked_product.id == product.id:
                raise ValidationError("A product cannot use itself as a sub-recipe", "linked_product_id")
            if cls.model.objects.filter(
                product=linked_product, role=RecipeLine.Role.MANDATORY
            ).exists():
                raise ValidationError(
                    "Sub-recipe products cannot have mandatory slots", "linked_product_id"
                )

        return RecipeLine(
            product=product,
            role=role,
            slot_key=slot_key,
            option_key=option_key,
            option_label=str(data.get("option_label") or ""),
            item_type=item_type,
            material=material,
            linked_product=linked_product,
            quantity=require_decimal(data.get("quantity"), "quantity"),
            unit=data.get("unit") or (material.base_unit if material else "pcs"),
            sort_order=int(data.get("sort_order", index)),
        )

    @classmethod
    @transaction.atomic
    def replace_recipe(cls, product_id: int, lines: List[Dict[str, Any]]) -> Dict[str, Any]:
        product = cls._get_product(product_id)
        if not isinstance(lines, list):
            raise ValidationError("lines must be a list", "lines")

        new_lines = [cls._build_line(product, data, i) for i, data in enumerate(lines)]
        cls.model.objects.filter(product=product).delete()
        cls.model.objects.bulk_create(new_lines)

        from .product_service import ProductService
        ProductService.refresh_unit_cost(product.id)

        logger.info("Recipe for %s replaced with %d lines", product.name, len(new_lines))
        result = cls.get_recipe(product.id)
        result["message"] = "Recipe saved"
        return result

    @classmethod
    @transaction.atomic
    def add_line(cls, product_id: int, **data) -> Dict[str, Any]:
        product = cls._get_product(product_id)
        next_order = cls.model.objects.filter(product=product).count()
        line = cls._build_line(product, data, next_order)
        line.save()

        from .product_service import ProductService
        ProductService.refresh_unit_cost(product.id)

        return success_response({"line": cls.serialize_line(line)}, "Recipe line added")
