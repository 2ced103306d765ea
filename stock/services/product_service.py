import logging
from typing import Dict, Any, List
from decimal import Decimal

from django.db import transaction
from django.db.models import Q

from stock.models import Material, Product, RecipeLine
from stock.services.base_service import (
    BaseService, success_response, paginate_queryset,
    ValidationError, NotFoundError, DataConsistencyError,
    to_decimal, require_decimal, round_decimal,
)
from stock.services.material_service import MaterialCostCache
from stock.services.resolution import Base, resolve_lines

logger = logging.getLogger(__name__)


class ProductService(BaseService):
    model = Product

    EDITABLE_FIELDS = [
        "external_ref", "name", "sku", "category", "base_price", "supplier_cost",
        "combo_price_override", "quantity_per_carton", "manage_stock", "supplier",
        "is_active",
    ]
    DECIMAL_FIELDS = ["base_price", "supplier_cost"]

    @classmethod
    def serialize(cls, product: Product) -> Dict[str, Any]:
        return {
            "id": product.id,
            "uuid": str(product.uuid),
            "external_ref": product.external_ref,
            "name": product.name,
            "sku": product.sku,
            "category": product.category,
            "base_price": str(product.base_price),
            "supplier_cost": str(product.supplier_cost),
            "unit_cost": str(product.unit_cost),
            "combo_price_override": str(product.combo_price_override) if product.combo_price_override is not None else None,
            "effective_price": str(product.effective_price()),
            "quantity_per_carton": product.quantity_per_carton,
            "stock_quantity": str(product.stock_quantity),
            "manage_stock": product.manage_stock,
            "supplier": product.supplier,
            "is_active": product.is_active,
        }

    @classmethod
    def get_product(cls, product_id: int) -> Product:
        product = cls.get_by_id(product_id)
        if not product:
            raise NotFoundError("Product", product_id)
        return product

    @classmethod
    def get_by_external_ref(cls, external_ref: str) -> Product:
        product = cls.model.objects.filter(external_ref=str(external_ref)).first()
        if not product:
            raise NotFoundError("Product", external_ref)
        return product

    @classmethod
    def list(cls,
             search: str = None,
             category: str = None,
             manage_stock: bool = None,
             page: int = 1,
             per_page: int = 50) -> Dict[str, Any]:
        queryset = cls.get_active()
        if search:
            queryset = queryset.filter(Q(name__icontains=search) | Q(sku__icontains=search))
        if category:
            queryset = queryset.filter(category=category)
        if manage_stock is not None:
            queryset = queryset.filter(manage_stock=manage_stock)

        items, pagination = paginate_queryset(queryset, page, per_page)
        return success_response({
            "products": [cls.serialize(p) for p in items],
            "pagination": pagination,
        })

    @classmethod
    def get(cls, product_id: int) -> Dict[str, Any]:
        return success_response({"product": cls.serialize(cls.get_product(product_id))})

    @classmethod
    def _apply(cls, product: Product, data: Dict[str, Any]) -> list:
        update_fields = []
        for field in cls.EDITABLE_FIELDS:
            if field not in data:
                continue
            value = data[field]
            if field in cls.DECIMAL_FIELDS:
                value = require_decimal(value, field, allow_zero=True)
            elif field == "combo_price_override":
                value = None if value in (None, "") else require_decimal(value, field, allow_zero=True)
            elif field == "quantity_per_carton":
                value = int(value) if value not in (None, "") else None
            elif field == "external_ref":
                value = str(value) if value not in (None, "") else None
            setattr(product, field, value)
            update_fields.append(field)
        return update_fields

    @classmethod
    @transaction.atomic
    def create(cls, **data) -> Dict[str, Any]:
        if not str(data.get("name") or "").strip():
            raise ValidationError("Product name is required", "name")
        if data.get("external_ref") and cls.model.objects.filter(external_ref=str(data["external_ref"])).exists():
            raise ValidationError("A product with this external reference already exists", "external_ref")

        product = cls.model()
        cls._apply(product, data)
        product.save()
        return success_response({"product": cls.serialize(product)}, "Product created")

    @classmethod
    @transaction.atomic
    def update(cls, product_id: int, **data) -> Dict[str, Any]:
        product = cls.get_product(product_id)
        update_fields = cls._apply(product, data)
        if update_fields:
            product.save(update_fields=update_fields + ["updated_at"])
        if "supplier_cost" in update_fields:
            cls.refresh_unit_cost(product.id)
            product.refresh_from_db()
        return success_response({"product": cls.serialize(product)}, "Product updated")

    @classmethod
    def estimate_cost(cls, product_id: int, quantity: Decimal = 1, selection=None) -> Dict[str, Any]:
        """COGS breakdown for selling `quantity` of a product, using cached unit costs."""
        from .recipe_service import RecipeService

        product = cls.get_product(product_id)
        quantity = require_decimal(quantity, "quantity")
        resolved = RecipeService.resolve(product.id, quantity, selection)
        materials = Material.objects.in_bulk([material_id for material_id, _ in resolved])

        breakdown = []
        material_cost = Decimal("0")
        for material_id, qty in resolved:
            unit_cost = MaterialCostCache.get(material_id) or Decimal("0")
            line_cost = round_decimal(qty * unit_cost)
            material_cost += line_cost
            breakdown.append({
                "material_id": material_id,
                "material_name": materials[material_id].name,
                "quantity": str(qty),
                "unit": materials[material_id].base_unit,
                "unit_cost": str(unit_cost),
                "total_cost": str(line_cost),
            })

        supplier_cost = round_decimal(product.supplier_cost * quantity)
        total = material_cost + supplier_cost
        price = product.effective_price() * quantity
        return success_response({
            "product_id": product.id,
            "product_name": product.name,
            "quantity": str(quantity),
            "materials": breakdown,
            "material_cost": str(material_cost),
            "supplier_cost": str(supplier_cost),
            "total_cost": str(total),
            "price": str(price),
            "margin": str(price - total),
        })

    @classmethod
    @transaction.atomic
    def refresh_unit_cost(cls, product_id: int) -> Decimal:
        """Store supplier cost plus the cost of the always-consumed recipe lines on the product."""
        from .recipe_service import RecipeService

        product = cls.get_product(product_id)
        base_lines = [
            spec for spec in RecipeService.line_specs(product.id)
            if isinstance(spec.role, Base)
        ]
        resolved = resolve_lines(
            base_lines, Decimal("1"),
            load_sub_recipe=RecipeService.line_specs,
            material_exists=lambda material_id: Material.objects.filter(id=material_id).exists(),
        )

        # Read costs from the rows, the cache may still hold a price this transaction replaced
        costs = dict(Material.objects.filter(
            id__in=[material_id for material_id, _ in resolved]
        ).values_list("id", "cost_per_unit"))
        recipe_cost = sum(
            (qty * costs.get(material_id, Decimal("0")) for material_id, qty in resolved),
            Decimal("0"),
        )
        product.unit_cost = round_decimal(to_decimal(product.supplier_cost) + recipe_cost)
        product.save(update_fields=["unit_cost", "updated_at"])
        return product.unit_cost

    @classmethod
    def refresh_unit_costs_for_material(cls, material_id: int) -> List[int]:
        """Refresh every product using the material directly or through a sub-recipe."""
        direct = set(RecipeLine.objects.filter(
            material_id=material_id
        ).values_list("product_id", flat=True))
        via_sub_recipe = set(RecipeLine.objects.filter(
            linked_product_id__in=direct
        ).values_list("product_id", flat=True))

        refreshed = []
        for product_id in sorted(direct | via_sub_recipe):
            try:
                cls.refresh_unit_cost(product_id)
            except DataConsistencyError as e:
                logger.error("Cannot refresh unit cost of product %s: %s", product_id, e.message)
                continue
            refreshed.append(product_id)

        if refreshed:
            logger.info("Refreshed unit cost of %d products after material %s price change",
                        len(refreshed), material_id)
        return refreshed
