import json
import logging
from datetime import datetime

from django.http import HttpResponse, JsonResponse
from django.views import View
from django.views.decorators.csrf import csrf_exempt
from django.utils.decorators import method_decorator

from stock.services import (
    ValidationError, NotFoundError, InvalidStateError,
    MissingSelectionError, DataConsistencyError,
    get_date_range,
    MaterialService, ProductService, RecipeService,
    ConsumptionService, PurchaseOrderService, StockCheckService,
)

logger = logging.getLogger(__name__)


def error_response(message: str, code: str = "error", status: int = 400, details: dict = None):
    data = {"success": False, "error": {"code": code, "message": message}}
    if details:
        data["error"]["details"] = details
    return JsonResponse(data, status=status)


def handle_service_error(e: Exception):
    if isinstance(e, ValidationError):
        return error_response(e.message, e.code, 400, {"field": e.field, **e.details})
    elif isinstance(e, NotFoundError):
        return error_response(e.message, e.code, 404, e.details)
    elif isinstance(e, InvalidStateError):
        return error_response(e.message, e.code, 409, e.details)
    elif isinstance(e, MissingSelectionError):
        return error_response(e.message, e.code, 422, e.details)
    elif isinstance(e, DataConsistencyError):
        return error_response(e.message, e.code, 500, e.details)
    else:
        logger.exception("Unhandled error in stock API")
        return error_response(str(e), "server_error", 500)


class BaseStockView(View):
    @method_decorator(csrf_exempt)
    def dispatch(self, request, *args, **kwargs):
        return super().dispatch(request, *args, **kwargs)

    def get_json_body(self, request):
        try:
            return json.loads(request.body) if request.body else {}
        except json.JSONDecodeError:
            return {}

    def get_int(self, request, name: str, default: int) -> int:
        value = request.GET.get(name)
        if value in (None, ""):
            return default
        try:
            return int(value)
        except ValueError:
            raise ValidationError(f"{name} must be an integer", name)

    def get_date(self, request, name: str):
        value = request.GET.get(name)
        if not value:
            return None
        try:
            return datetime.fromisoformat(value).date()
        except ValueError:
            raise ValidationError(f"{name} must be an ISO date", name)

    def success(self, data: dict, status: int = 200):
        return JsonResponse({"success": True, **data}, status=status)


# ==================== MATERIALS ====================

class MaterialListView(BaseStockView):
    """GET/POST /api/stock/materials/"""

    def get(self, request):
        try:
            result = MaterialService.list(
                category=request.GET.get("category"),
                supplier=request.GET.get("supplier"),
                search=request.GET.get("search"),
                low_stock_only=request.GET.get("low_stock_only", "").lower() == "true",
                page=self.get_int(request, "page", 1),
                per_page=self.get_int(request, "per_page", 50),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def post(self, request):
        try:
            data = self.get_json_body(request)
            result = MaterialService.create(**data)
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


class MaterialDetailView(BaseStockView):
    """GET/PUT/DELETE /api/stock/materials/<id>/"""

    def get(self, request, material_id):
        try:
            result = MaterialService.get(material_id)
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def put(self, request, material_id):
        try:
            data = self.get_json_body(request)
            result = MaterialService.update(material_id, **data)
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def delete(self, request, material_id):
        try:
            result = MaterialService.delete(material_id)
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class MaterialLowStockView(BaseStockView):

    def get(self, request):
        try:
            result = MaterialService.low_stock()
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class MaterialPriceHistoryView(BaseStockView):
    """GET/POST /api/stock/materials/<id>/price-history/"""

    def get(self, request, material_id):
        try:
            result = MaterialService.price_history(
                material_id, limit=self.get_int(request, "limit", 20)
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def post(self, request, material_id):
        try:
            data = self.get_json_body(request)
            result = MaterialService.update_price(
                material_id,
                purchase_quantity=data.get("purchase_quantity"),
                purchase_cost=data.get("purchase_cost"),
                notes=data.get("notes", ""),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class MaterialMovementView(BaseStockView):

    def get(self, request, material_id):
        try:
            result = MaterialService.movements(
                material_id,
                page=self.get_int(request, "page", 1),
                per_page=self.get_int(request, "per_page", 50),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class MaterialConsumptionView(BaseStockView):
    """GET /api/stock/materials/<id>/consumptions/?period=last_7_days"""

    def get(self, request, material_id):
        try:
            date_from = self.get_date(request, "date_from")
            date_to = self.get_date(request, "date_to")
            if request.GET.get("period"):
                date_from, date_to = get_date_range(request.GET["period"])

            result = ConsumptionService.by_material(
                material_id,
                date_from=date_from,
                date_to=date_to,
                page=self.get_int(request, "page", 1),
                per_page=self.get_int(request, "per_page", 50),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


# ==================== PRODUCTS & RECIPES ====================

class ProductListView(BaseStockView):

    def get(self, request):
        try:
            manage_stock = request.GET.get("manage_stock")
            result = ProductService.list(
                search=request.GET.get("search"),
                category=request.GET.get("category"),
                manage_stock=None if manage_stock is None else manage_stock.lower() == "true",
                page=self.get_int(request, "page", 1),
                per_page=self.get_int(request, "per_page", 50),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def post(self, request):
        try:
            data = self.get_json_body(request)
            result = ProductService.create(**data)
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


class ProductDetailView(BaseStockView):

    def get(self, request, product_id):
        try:
            result = ProductService.get(product_id)
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def put(self, request, product_id):
        try:
            data = self.get_json_body(request)
            result = ProductService.update(product_id, **data)
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class ProductRecipeView(BaseStockView):
    """GET/PUT/POST /api/stock/products/<id>/recipe/"""

    def get(self, request, product_id):
        try:
            result = RecipeService.get_recipe(product_id)
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def put(self, request, product_id):
        try:
            data = self.get_json_body(request)
            result = RecipeService.replace_recipe(product_id, data.get("lines", []))
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def post(self, request, product_id):
        try:
            data = self.get_json_body(request)
            result = RecipeService.add_line(product_id, **data)
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


class ProductCostView(BaseStockView):
    """GET for the plain product, POST with a bundle_selection for a configured bundle."""

    def get(self, request, product_id):
        try:
            result = ProductService.estimate_cost(
                product_id, quantity=request.GET.get("quantity", 1)
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def post(self, request, product_id):
        try:
            data = self.get_json_body(request)
            result = ProductService.estimate_cost(
                product_id,
                quantity=data.get("quantity", 1),
                selection=data.get("bundle_selection"),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class ProductResolveView(BaseStockView):

    def post(self, request, product_id):
        try:
            data = self.get_json_body(request)
            result = RecipeService.dry_run(
                product_id,
                quantity=data.get("quantity", 1),
                selection=data.get("bundle_selection"),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


# ==================== ORDER CONSUMPTION ====================

class OrderConsumptionView(BaseStockView):
    """POST /api/stock/orders/consumption/"""

    def post(self, request):
        try:
            data = self.get_json_body(request)
            if not data.get("order_id"):
                raise ValidationError("order_id is required", "order_id")
            result = ConsumptionService.record_order(data["order_id"], data.get("line_items"))
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


class OrderConsumptionListView(BaseStockView):

    def get(self, request, order_id):
        try:
            result = ConsumptionService.by_order(
                order_id,
                page=self.get_int(request, "page", 1),
                per_page=self.get_int(request, "per_page", 50),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class OrderItemReverseView(BaseStockView):

    def post(self, request, order_id, order_item_id):
        try:
            result = ConsumptionService.reverse_line_item(order_id, order_item_id)
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


# ==================== PURCHASE ORDERS ====================

class PurchaseOrderListView(BaseStockView):
    """GET/POST /api/stock/purchase-orders/"""

    def get(self, request):
        try:
            result = PurchaseOrderService.list(
                status=request.GET.get("status"),
                supplier=request.GET.get("supplier"),
                search=request.GET.get("search"),
                page=self.get_int(request, "page", 1),
                per_page=self.get_int(request, "per_page", 20),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def post(self, request):
        try:
            data = self.get_json_body(request)
            result = PurchaseOrderService.create(
                supplier=data.get("supplier"),
                items=data.get("items", []),
                order_date=data.get("order_date"),
                expected_delivery_date=data.get("expected_delivery_date"),
                notes=data.get("notes", ""),
            )
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


class PurchaseOrderDetailView(BaseStockView):
    """GET/PATCH/DELETE /api/stock/purchase-orders/<id>/"""

    def get(self, request, po_id):
        try:
            result = PurchaseOrderService.get(po_id)
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def patch(self, request, po_id):
        try:
            data = self.get_json_body(request)
            patch = {k: v for k, v in data.items() if k in PurchaseOrderService.METADATA_FIELDS}
            result = PurchaseOrderService.update_metadata(po_id, **patch)
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    put = patch

    def delete(self, request, po_id):
        try:
            result = PurchaseOrderService.delete(po_id)
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class PurchaseOrderItemView(BaseStockView):
    """PUT /api/stock/purchase-orders/<id>/items/"""

    def put(self, request, po_id):
        try:
            data = self.get_json_body(request)
            result = PurchaseOrderService.update_items(po_id, data.get("items"))
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class PurchaseOrderCsvView(BaseStockView):

    def get(self, request, po_id):
        try:
            export = PurchaseOrderService.export_csv(po_id)
        except Exception as e:
            return handle_service_error(e)

        response = HttpResponse(export["content"], content_type="text/csv; charset=utf-8")
        response["Content-Disposition"] = f'attachment; filename="{export["filename"]}"'
        return response


class PurchaseOrderActionView(BaseStockView):
    """POST /api/stock/purchase-orders/<id>/<action>/ for order, cancel and receive."""

    def post(self, request, po_id, action):
        try:
            if action == "order":
                result = PurchaseOrderService.mark_ordered(po_id)
            elif action == "cancel":
                result = PurchaseOrderService.cancel(po_id)
            elif action == "receive":
                result = PurchaseOrderService.receive(po_id)
            else:
                return error_response(f"Unknown action: {action}", "invalid_action", 400)

            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class PurchaseOrderSupplierView(BaseStockView):

    def get(self, request):
        try:
            result = PurchaseOrderService.list_suppliers()
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class OrderableItemsView(BaseStockView):

    def get(self, request):
        try:
            result = PurchaseOrderService.list_orderable_items(
                supplier=request.GET.get("supplier")
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class PurchaseOrderByNumberView(BaseStockView):

    def get(self, request, po_number):
        try:
            result = PurchaseOrderService.get_by_number(po_number)
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


# ==================== STOCK CHECKS ====================

class StockCheckListView(BaseStockView):
    """GET/POST /api/stock/stock-checks/"""

    def get(self, request):
        try:
            result = StockCheckService.list(
                limit=self.get_int(request, "limit", 20),
                offset=self.get_int(request, "offset", 0),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def post(self, request):
        try:
            data = self.get_json_body(request)
            result = StockCheckService.record(data.get("items"), notes=data.get("notes"))
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


class StockCheckDetailView(BaseStockView):

    def get(self, request, log_id):
        try:
            result = StockCheckService.get_with_items(log_id)
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def delete(self, request, log_id):
        try:
            result = StockCheckService.delete(log_id)
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class StockCheckHistoryView(BaseStockView):

    def get(self, request, item_type, ref_id):
        try:
            result = StockCheckService.item_history(
                item_type, ref_id, limit=self.get_int(request, "limit", 50)
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)
