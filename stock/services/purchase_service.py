import csv
import io
import logging
from typing import Dict, Any, List, Optional
from decimal import Decimal
from datetime import date, datetime

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F, Q
from django.utils import timezone

from stock.models import (
    Material, MaterialMovement, Product, PurchaseOrder, PurchaseOrderItem,
)
from stock.services.base_service import (
    BaseService, success_response, paginate_queryset,
    ValidationError, NotFoundError, InvalidStateError,
    require_decimal, round_decimal, generate_number,
)
from stock.services.material_service import MaterialService

logger = logging.getLogger(__name__)


# Allowed status changes through update_metadata; RECEIVED is routed to receive()
TRANSITIONS = {
    PurchaseOrder.Status.DRAFT: {PurchaseOrder.Status.ORDERED, PurchaseOrder.Status.CANCELLED,
                                 PurchaseOrder.Status.RECEIVED},
    PurchaseOrder.Status.ORDERED: {PurchaseOrder.Status.CANCELLED, PurchaseOrder.Status.RECEIVED},
    PurchaseOrder.Status.RECEIVED: set(),
    PurchaseOrder.Status.CANCELLED: set(),
}

CSV_HEADER = [
    "PO Number", "Supplier", "Status", "Order Date", "Expected Delivery",
    "Item Type", "Item Name", "SKU", "Quantity", "Unit",
    "Unit Cost ({currency})", "Total Cost ({currency})", "Notes",
]


def _parse_date(value, field: str) -> Optional[date]:
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value)).date()
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date", field)


def _plain_number(value: Decimal) -> str:
    value = Decimal(value).normalize()
    return format(value, "f")


class PurchaseOrderService(BaseService):
    model = PurchaseOrder

    METADATA_FIELDS = ("supplier", "order_date", "expected_delivery_date", "notes", "status")
    NUMBER_ATTEMPTS = 5

    @classmethod
    def serialize_item(cls, item: PurchaseOrderItem) -> Dict[str, Any]:
        return {
            "id": item.id,
            "item_type": item.item_type,
            "material_id": item.material_id,
            "product_id": item.product_id,
            "ref_id": item.ref_id,
            "item_name": item.item_name,
            "sku": item.sku,
            "quantity": str(item.quantity),
            "unit": item.unit,
            "unit_cost": str(item.unit_cost),
            "total_cost": str(item.total_cost),
            "received_quantity": str(item.received_quantity),
            "notes": item.notes,
        }

    @classmethod
    def serialize(cls, po: PurchaseOrder, include_items: bool = True) -> Dict[str, Any]:
        data = {
            "id": po.id,
            "uuid": str(po.uuid),
            "po_number": po.po_number,
            "supplier": po.supplier,
            "status": po.status,
            "status_display": po.get_status_display(),
            "order_date": po.order_date.isoformat() if po.order_date else None,
            "expected_delivery_date": po.expected_delivery_date.isoformat() if po.expected_delivery_date else None,
            "received_date": po.received_date.isoformat() if po.received_date else None,
            "total_amount": str(po.total_amount),
            "notes": po.notes,
            "created_at": po.created_at.isoformat() if po.created_at else None,
            "updated_at": po.updated_at.isoformat() if po.updated_at else None,
        }
        if include_items:
            data["items"] = [cls.serialize_item(i) for i in po.items.all()]
        else:
            data["items_count"] = po.items.count()
        return data

    @classmethod
    def get_order(cls, po_id: int, lock: bool = False) -> PurchaseOrder:
        queryset = cls.model.objects.select_for_update() if lock else cls.model.objects
        po = queryset.filter(id=po_id).first()
        if not po:
            raise NotFoundError("Purchase order", po_id)
        return po

    @classmethod
    def list(cls,
             status: str = None,
             supplier: str = None,
             search: str = None,
             page: int = 1,
             per_page: int = 20) -> Dict[str, Any]:
        queryset = cls.model.objects.all()

        if status:
            queryset = queryset.filter(status=status.upper())
        if supplier:
            queryset = queryset.filter(supplier=supplier)
        if search:
            queryset = queryset.filter(
                Q(po_number__icontains=search) | Q(supplier__icontains=search)
            )

        items, pagination = paginate_queryset(queryset, page, per_page)
        return success_response({
            "purchase_orders": [cls.serialize(po, include_items=False) for po in items],
            "pagination": pagination,
        })

    @classmethod
    def get(cls, po_id: int) -> Dict[str, Any]:
        return success_response({"purchase_order": cls.serialize(cls.get_order(po_id))})

    @classmethod
    def get_by_number(cls, po_number: str) -> Dict[str, Any]:
        po = cls.model.objects.filter(po_number=po_number).first()
        if not po:
            raise NotFoundError("Purchase order", po_number)
        return success_response({"purchase_order": cls.serialize(po)})

    @classmethod
    def _next_po_number(cls) -> str:
        return generate_number(
            settings.STOCK_PO_NUMBER_PREFIX, cls.model, "po_number", date_format="%Y-%m"
        )

    @classmethod
    def _create_numbered(cls, fields: Dict[str, Any]) -> PurchaseOrder:
        """Insert a PO under the next free number, retrying when another request took it first."""
        for attempt in range(1, cls.NUMBER_ATTEMPTS + 1):
            po_number = cls._next_po_number()
            try:
                with transaction.atomic():
                    return cls.model.objects.create(po_number=po_number, **fields)
            except IntegrityError:
                logger.warning("PO number %s already taken (attempt %d)", po_number, attempt)

        raise InvalidStateError("Could not allocate a purchase order number, try again")

    @classmethod
    def _build_item(cls, po: PurchaseOrder, data: Dict[str, Any], index: int) -> PurchaseOrderItem:
        item_type = str(data.get("item_type") or "").upper()
        if item_type not in PurchaseOrderItem.ItemType.values:
            raise ValidationError(
                f"Invalid item type. Valid: {PurchaseOrderItem.ItemType.values}", "item_type"
            )

        quantity = require_decimal(data.get("quantity"), "quantity")
        material = product = None

        if item_type == PurchaseOrderItem.ItemType.MATERIAL:
            material_id = data.get("material_id") or data.get("ref_id")
            material = Material.objects.filter(id=material_id).first() if material_id else None
            if not material:
                raise NotFoundError("Material", material_id)
            name, sku = material.name, ""
            unit = data.get("unit") or material.base_unit
            default_cost = material.cost_per_unit
        else:
            product_id = data.get("product_id") or data.get("ref_id")
            product = Product.objects.filter(id=product_id).first() if product_id else None
            if not product:
                raise NotFoundError("Product", product_id)
            name, sku = product.name, product.sku
            unit = data.get("unit") or "pcs"
            default_cost = product.supplier_cost

        unit_cost = data.get("unit_cost")
        unit_cost = default_cost if unit_cost in (None, "") else require_decimal(unit_cost, "unit_cost", allow_zero=True)

        return PurchaseOrderItem(
            purchase_order=po,
            item_type=item_type,
            material=material,
            product=product,
            item_name=data.get("item_name") or name,
            sku=data.get("sku") or sku,
            quantity=quantity,
            unit=unit,
            unit_cost=unit_cost,
            total_cost=round_decimal(quantity * Decimal(unit_cost)),
            notes=data.get("notes") or "",
            sort_order=index,
        )

    @classmethod
    def _recalculate_totals(cls, po: PurchaseOrder):
        po.total_amount = sum((item.total_cost for item in po.items.all()), Decimal("0"))
        po.save(update_fields=["total_amount", "updated_at"])

    @classmethod
    def _replace_items(cls, po: PurchaseOrder, items: List[Dict[str, Any]]):
        if not isinstance(items, list):
            raise ValidationError("items must be a list", "items")
        new_items = [cls._build_item(po, data, i) for i, data in enumerate(items)]
        po.items.all().delete()
        PurchaseOrderItem.objects.bulk_create(new_items)
        cls._recalculate_totals(po)

    @classmethod
    @transaction.atomic
    def create(cls,
               supplier: str,
               items: List[Dict] = None,
               order_date: date = None,
               expected_delivery_date: date = None,
               notes: str = "") -> Dict[str, Any]:
        supplier = str(supplier or "").strip()
        if not supplier:
            raise ValidationError("Supplier is required", "supplier")

        fields = {
            "supplier": supplier,
            "status": PurchaseOrder.Status.DRAFT,
            "order_date": _parse_date(order_date, "order_date") or timezone.localdate(),
            "expected_delivery_date": _parse_date(expected_delivery_date, "expected_delivery_date"),
            "notes": notes or "",
        }
        po = cls._create_numbered(fields)
        cls._replace_items(po, items or [])

        logger.info("Purchase order %s created for %s", po.po_number, supplier)
        return success_response({"purchase_order": cls.serialize(po)}, "Purchase order created")

    @classmethod
    @transaction.atomic
    def update_items(cls, po_id: int, items: List[Dict]) -> Dict[str, Any]:
        po = cls.get_order(po_id, lock=True)
        if po.status != PurchaseOrder.Status.DRAFT:
            raise InvalidStateError("Can only change items of orders in DRAFT status", po.status)

        cls._replace_items(po, items)
        return success_response({"purchase_order": cls.serialize(po)}, "Items updated")

    @classmethod
    @transaction.atomic
    def update_metadata(cls, po_id: int, **patch) -> Dict[str, Any]:
        po = cls.get_order(po_id, lock=True)

        new_status = patch.pop("status", None)
        if new_status:
            new_status = str(new_status).upper()
            if new_status not in PurchaseOrder.Status.values:
                raise ValidationError(f"Invalid status. Valid: {PurchaseOrder.Status.values}", "status")

        update_fields = ["updated_at"]
        fields = {k: v for k, v in patch.items() if k in cls.METADATA_FIELDS}
        if fields:
            if po.status != PurchaseOrder.Status.DRAFT:
                raise InvalidStateError("Can only update orders in DRAFT status", po.status)
            if "supplier" in fields:
                fields["supplier"] = str(fields["supplier"] or "").strip()
                if not fields["supplier"]:
                    raise ValidationError("Supplier is required", "supplier")
            for field in ("order_date", "expected_delivery_date"):
                if field in fields:
                    fields[field] = _parse_date(fields[field], field)
            if "order_date" in fields and fields["order_date"] is None:
                raise ValidationError("order_date cannot be empty", "order_date")
            if "notes" in fields:
                fields["notes"] = fields["notes"] or ""
            for field, value in fields.items():
                setattr(po, field, value)
                update_fields.append(field)
            po.save(update_fields=update_fields)

        if new_status and new_status != po.status:
            if new_status not in TRANSITIONS[po.status]:
                raise InvalidStateError(
                    f"Cannot move purchase order from {po.status} to {new_status}", po.status
                )
            if new_status == PurchaseOrder.Status.RECEIVED:
                return cls.receive(po.id)
            po.status = new_status
            po.save(update_fields=["status", "updated_at"])
            logger.info("Purchase order %s is now %s", po.po_number, new_status)
        elif new_status and new_status in (PurchaseOrder.Status.RECEIVED, PurchaseOrder.Status.CANCELLED):
            raise InvalidStateError(f"Purchase order is already {po.status}", po.status)

        return success_response({"purchase_order": cls.serialize(po)}, "Purchase order updated")

    @classmethod
    def mark_ordered(cls, po_id: int) -> Dict[str, Any]:
        return cls.update_metadata(po_id, status=PurchaseOrder.Status.ORDERED)

    @classmethod
    def cancel(cls, po_id: int) -> Dict[str, Any]:
        return cls.update_metadata(po_id, status=PurchaseOrder.Status.CANCELLED)

    @classmethod
    @transaction.atomic
    def delete(cls, po_id: int) -> Dict[str, Any]:
        po = cls.get_order(po_id, lock=True)
        if po.status != PurchaseOrder.Status.DRAFT:
            raise InvalidStateError("Only draft purchase orders can be deleted", po.status)

        po_number = po.po_number
        po.delete()
        logger.info("Purchase order %s deleted", po_number)
        return success_response({"deleted_id": po_id}, f"Purchase order {po_number} deleted")

    @classmethod
    @transaction.atomic
    def receive(cls, po_id: int) -> Dict[str, Any]:
        """Credit every ordered quantity into stock and close the order. Happens once."""
        po = cls.get_order(po_id, lock=True)
        if po.status not in (PurchaseOrder.Status.DRAFT, PurchaseOrder.Status.ORDERED):
            raise InvalidStateError(f"Cannot receive a purchase order in {po.status} status", po.status)

        items = list(po.items.all())
        today = timezone.localdate()
        for item in sorted(items, key=lambda i: (i.item_type, i.ref_id or 0)):
            if item.item_type == PurchaseOrderItem.ItemType.MATERIAL:
                if item.material_id is None:
                    logger.warning("PO %s item %s has no material, skipped", po.po_number, item.item_name)
                    continue
                MaterialService.adjust_stock(
                    item.material_id, item.quantity, MaterialMovement.Reason.PURCHASE_RECEIPT,
                    reference_type="purchase_order", reference_id=po.po_number,
                )
                Material.objects.filter(id=item.material_id).update(last_purchase_date=today)
            else:
                if item.product_id is None:
                    logger.warning("PO %s item %s has no product, skipped", po.po_number, item.item_name)
                    continue
                Product.objects.filter(id=item.product_id).update(
                    stock_quantity=F("stock_quantity") + item.quantity,
                    updated_at=timezone.now(),
                )

        po.items.update(received_quantity=F("quantity"))
        po.status = PurchaseOrder.Status.RECEIVED
        po.received_date = timezone.now()
        po.save(update_fields=["status", "received_date", "updated_at"])

        logger.info("Purchase order %s received, %d items credited", po.po_number, len(items))
        return success_response({"purchase_order": cls.serialize(po)}, "Purchase order received")

    @classmethod
    def export_csv(cls, po_id: int) -> Dict[str, str]:
        """Return {"filename", "content"} for a spreadsheet-friendly export of one order."""
        po = cls.get_order(po_id)
        currency = settings.STOCK_CURRENCY_LABEL
        columns = len(CSV_HEADER)

        output = io.StringIO()
        writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow([h.format(currency=currency) for h in CSV_HEADER])

        for item in po.items.all():
            writer.writerow([
                po.po_number,
                po.supplier,
                po.status.lower(),
                po.order_date.isoformat() if po.order_date else "",
                po.expected_delivery_date.isoformat() if po.expected_delivery_date else "",
                item.item_type.lower(),
                item.item_name,
                item.sku,
                _plain_number(item.quantity),
                item.unit,
                f"{item.unit_cost:.2f}",
                f"{item.total_cost:.2f}",
                item.notes,
            ])

        total_row = [""] * columns
        total_row[10] = "TOTAL:"
        total_row[11] = f"{currency} {po.total_amount:.2f}"
        writer.writerow(total_row)

        if po.notes:
            writer.writerow([""] * columns)
            writer.writerow(["Notes:", po.notes] + [""] * (columns - 2))

        return {
            "filename": f"PO-{po.po_number}.csv",
            "content": output.getvalue(),
        }

    @classmethod
    def list_suppliers(cls) -> Dict[str, Any]:
        from_materials = Material.objects.exclude(supplier="").values_list("supplier", flat=True)
        from_orders = cls.model.objects.exclude(supplier="").values_list("supplier", flat=True)
        suppliers = sorted(set(from_materials) | set(from_orders), key=str.lower)
        return success_response({"suppliers": suppliers})

    @classmethod
    def list_orderable_items(cls, supplier: str = None) -> Dict[str, Any]:
        materials = Material.objects.all()
        products = Product.objects.filter(is_active=True, manage_stock=True)
        if supplier:
            materials = materials.filter(supplier=supplier)
            products = products.filter(supplier=supplier)

        items = [
            {
                "item_type": PurchaseOrderItem.ItemType.MATERIAL,
                "ref_id": m.id,
                "name": m.name,
                "sku": "",
                "unit": m.base_unit,
                "unit_cost": str(m.cost_per_unit),
                "supplier": m.supplier,
                "stock_quantity": str(m.stock_quantity),
                "low_stock_threshold": str(m.low_stock_threshold),
            }
            for m in materials
        ] + [
            {
                "item_type": PurchaseOrderItem.ItemType.PRODUCT,
                "ref_id": p.id,
                "name": p.name,
                "sku": p.sku,
                "unit": "pcs",
                "unit_cost": str(p.supplier_cost),
                "supplier": p.supplier,
                "stock_quantity": str(p.stock_quantity),
                "quantity_per_carton": p.quantity_per_carton,
            }
            for p in products
        ]
        return success_response({"items": items, "count": len(items)})
