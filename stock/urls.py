from django.urls import path
from . import views

app_name = "stock"

urlpatterns = [
    path("materials/", views.MaterialListView.as_view(), name="material-list"),
    path("materials/low-stock/", views.MaterialLowStockView.as_view(), name="material-low-stock"),
    path("materials/<int:material_id>/", views.MaterialDetailView.as_view(), name="material-detail"),
    path("materials/<int:material_id>/price-history/", views.MaterialPriceHistoryView.as_view(), name="material-price-history"),
    path("materials/<int:material_id>/movements/", views.MaterialMovementView.as_view(), name="material-movements"),
    path("materials/<int:material_id>/consumptions/", views.MaterialConsumptionView.as_view(), name="material-consumptions"),

    path("products/", views.ProductListView.as_view(), name="product-list"),
    path("products/<int:product_id>/", views.ProductDetailView.as_view(), name="product-detail"),
    path("products/<int:product_id>/recipe/", views.ProductRecipeView.as_view(), name="product-recipe"),
    path("products/<int:product_id>/cost/", views.ProductCostView.as_view(), name="product-cost"),
    path("products/<int:product_id>/resolve/", views.ProductResolveView.as_view(), name="product-resolve"),

    path("orders/consumption/", views.OrderConsumptionView.as_view(), name="order-consumption"),
    path("orders/<str:order_id>/consumptions/", views.OrderConsumptionListView.as_view(), name="order-consumption-list"),
    path("orders/<str:order_id>/items/<str:order_item_id>/reverse/", views.OrderItemReverseView.as_view(), name="order-item-reverse"),

    path("purchase-orders/", views.PurchaseOrderListView.as_view(), name="po-list"),
    path("purchase-orders/suppliers/", views.PurchaseOrderSupplierView.as_view(), name="po-suppliers"),
    path("purchase-orders/orderable-items/", views.OrderableItemsView.as_view(), name="po-orderable-items"),
    path("purchase-orders/number/<str:po_number>/", views.PurchaseOrderByNumberView.as_view(), name="po-by-number"),
    path("purchase-orders/<int:po_id>/", views.PurchaseOrderDetailView.as_view(), name="po-detail"),
    path("purchase-orders/<int:po_id>/items/", views.PurchaseOrderItemView.as_view(), name="po-items"),
    path("purchase-orders/<int:po_id>/csv/", views.PurchaseOrderCsvView.as_view(), name="po-csv"),
    path("purchase-orders/<int:po_id>/<str:action>/", views.PurchaseOrderActionView.as_view(), name="po-action"),

    path("stock-checks/", views.StockCheckListView.as_view(), name="stock-check-list"),
    path("stock-checks/<int:log_id>/", views.StockCheckDetailView.as_view(), name="stock-check-detail"),
    path("stock-checks/history/<str:item_type>/<int:ref_id>/", views.StockCheckHistoryView.as_view(), name="stock-check-history"),
]
