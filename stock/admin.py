from django import forms
from django.contrib import admin, messages
from django.utils.translation import gettext_lazy as _
from unfold.admin import ModelAdmin, TabularInline
from unfold.decorators import action, display
from unfold.contrib.filters.admin import RangeDateTimeFilter

from .models import (
    Material, MaterialPriceHistory, MaterialMovement, Product, RecipeLine,
    InventoryConsumption, PurchaseOrder, PurchaseOrderItem,
    StockCheckLog, StockCheckLogItem,
)
from .services import MaterialService, ProductService, PurchaseOrderService, ServiceError


class MaterialPriceHistoryInline(TabularInline):
    model = MaterialPriceHistory
    extra = 0
    fields = ('effective_date', 'purchase_quantity', 'purchase_cost', 'cost_per_unit', 'notes')
    readonly_fields = fields
    can_delete = False


class MaterialAdminForm(forms.ModelForm):
    class Meta:
        model = Material
        fields = '__all__'

    def clean(self):
        cleaned_data = super().clean()
        try:
            MaterialService.clean(cleaned_data, creating=self.instance.pk is None)
        except ServiceError as e:
            raise forms.ValidationError(e.message)
        return cleaned_data


@admin.register(Material)
class MaterialAdmin(ModelAdmin):
    form = MaterialAdminForm
    list_display = ['id', 'name', 'category', 'stock_display', 'cost_per_unit', 'supplier', 'stock_badge']
    list_filter = ['category', 'supplier']
    search_fields = ['name', 'supplier']
    list_filter_submit = True
    list_fullwidth = True
    readonly_fields = ['cost_per_unit', 'stock_quantity', 'created_at', 'updated_at']
    inlines = [MaterialPriceHistoryInline]

    fieldsets = (
        (_('Material'), {
            'fields': ('name', 'category', 'supplier'),
            'classes': ['tab'],
        }),
        (_('Purchase Terms'), {
            'fields': ('purchase_unit', 'base_unit', 'purchase_quantity', 'purchase_cost', 'cost_per_unit', 'last_purchase_date'),
            'classes': ['tab'],
            'description': _('Cost per base unit is recalculated from the purchase terms on save.'),
        }),
        (_('Stock'), {
            'fields': ('stock_quantity', 'low_stock_threshold'),
            'classes': ['tab'],
            'description': _('Stock changes through sales, purchase receipts and corrections only.'),
        }),
    )

    @display(description=_("Stock"), ordering='stock_quantity')
    def stock_display(self, obj):
        return f"{obj.stock_quantity.normalize():f} {obj.base_unit}"

    @display(description=_("Level"), label=True)
    def stock_badge(self, obj):
        if obj.stock_quantity < 0:
            return 'danger', _('Backordered')
        if obj.is_low_stock:
            return 'warning', _('Low')
        return 'success', _('OK')

    def save_model(self, request, obj, form, change):
        # Price history, cost cache and product unit costs are kept by the service
        data = {field: form.cleaned_data[field]
                for field in MaterialService.EDITABLE_FIELDS if field in form.cleaned_data}
        if change:
            data['id'] = obj.pk
        material = MaterialService.upsert_material(data)
        obj.pk = material.pk
        obj.refresh_from_db()

    def delete_model(self, request, obj):
        MaterialService.delete(obj.pk)

    def delete_queryset(self, request, queryset):
        for material_id in queryset.values_list('pk', flat=True):
            MaterialService.delete(material_id)


@admin.register(MaterialMovement)
class MaterialMovementAdmin(ModelAdmin):
    list_display = ['id', 'material', 'reason', 'delta', 'quantity_before', 'quantity_after', 'reference_id', 'created_at']
    list_filter = ['reason', ('created_at', RangeDateTimeFilter)]
    search_fields = ['material__name', 'reference_id']
    list_filter_submit = True

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False


class RecipeLineInline(TabularInline):
    """Recipes are edited through the recipe API, which validates slots and sub-recipes."""

    model = RecipeLine
    fk_name = 'product'
    extra = 0
    fields = ('role', 'slot_key', 'option_key', 'option_label', 'item_type', 'material', 'linked_product', 'quantity', 'unit', 'sort_order')
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(Product)
class ProductAdmin(ModelAdmin):
    list_display = ['id', 'name', 'sku', 'price_display', 'unit_cost', 'stock_quantity', 'manage_stock', 'is_active']
    list_filter = ['manage_stock', 'is_active', 'category']
    search_fields = ['name', 'sku', 'external_ref']
    list_filter_submit = True
    readonly_fields = ['unit_cost', 'stock_quantity']
    inlines = [RecipeLineInline]

    @display(description=_("Price"), ordering='base_price')
    def price_display(self, obj):
        return f"{obj.effective_price():.2f}"

    def save_model(self, request, obj, form, change):
        super().save_model(request, obj, form, change)
        if 'supplier_cost' in form.changed_data:
            ProductService.refresh_unit_cost(obj.pk)


@admin.register(InventoryConsumption)
class InventoryConsumptionAdmin(ModelAdmin):
    list_display = ['id', 'order_id', 'order_item_id', 'product_name', 'material_name', 'quantity_consumed', 'unit_cost_snapshot', 'total_cost', 'consumed_at']
    list_filter = [('consumed_at', RangeDateTimeFilter)]
    search_fields = ['order_id', 'order_item_id', 'product_name', 'material_name']
    list_filter_submit = True
    list_fullwidth = True

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class PurchaseOrderItemInline(TabularInline):
    model = PurchaseOrderItem
    extra = 0
    fields = ('item_type', 'item_name', 'sku', 'quantity', 'unit', 'unit_cost', 'total_cost', 'received_quantity')
    readonly_fields = fields
    can_delete = False


@admin.register(PurchaseOrder)
class PurchaseOrderAdmin(ModelAdmin):
    list_display = ['po_number', 'supplier', 'status_badge', 'order_date', 'expected_delivery_date', 'total_display', 'received_date']
    list_filter = ['status', 'supplier']
    search_fields = ['po_number', 'supplier']
    list_filter_submit = True
    readonly_fields = ['po_number', 'status', 'total_amount', 'received_date']
    inlines = [PurchaseOrderItemInline]
    actions = ['receive_orders']

    def has_add_permission(self, request):
        return False

    @display(description=_("Status"), label=True)
    def status_badge(self, obj):
        colors = {
            'DRAFT': 'info',
            'ORDERED': 'warning',
            'RECEIVED': 'success',
            'CANCELLED': 'danger',
        }
        return colors.get(obj.status, 'info'), obj.get_status_display()

    @display(description=_("Total"), ordering='total_amount')
    def total_display(self, obj):
        return f"{obj.total_amount:.2f}"

    @action(description=_("Receive selected orders into stock"))
    def receive_orders(self, request, queryset):
        received = 0
        for po in queryset:
            try:
                PurchaseOrderService.receive(po.id)
                received += 1
            except ServiceError as e:
                self.message_user(request, f"{po.po_number}: {e.message}", messages.ERROR)
        if received:
            self.message_user(request, f"{received} purchase order(s) received", messages.SUCCESS)


class StockCheckLogItemInline(TabularInline):
    model = StockCheckLogItem
    extra = 0
    fields = ('item_type', 'item_name', 'unit', 'expected_qty', 'actual_qty', 'discrepancy', 'note')
    readonly_fields = fields
    can_delete = False


@admin.register(StockCheckLog)
class StockCheckLogAdmin(ModelAdmin):
    list_display = ['id', 'performed_at', 'items_checked', 'items_adjusted', 'notes']
    list_filter = [('performed_at', RangeDateTimeFilter)]
    list_filter_submit = True
    readonly_fields = ['items_checked', 'items_adjusted']
    inlines = [StockCheckLogItemInline]
