import uuid as uuid_lib
from decimal import Decimal, ROUND_HALF_UP

from django.db import models
from django.utils import timezone



class Material(models.Model):
    class Category(models.TextChoices):
        INGREDIENT = "INGREDIENT", "Ingredient"
        PACKAGING = "PACKAGING", "Packaging"
        CONSUMABLE = "CONSUMABLE", "Consumable"

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    name = models.CharField(max_length=200)
    category = models.CharField(
        max_length=20, choices=Category.choices, default=Category.INGREDIENT
    )

    # Purchase terms: purchase_cost buys purchase_quantity base units
    purchase_unit = models.CharField(max_length=30, blank=True, default="")
    base_unit = models.CharField(max_length=20, default="g")
    purchase_quantity = models.DecimalField(max_digits=15, decimal_places=4, default=1)
    purchase_cost = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    cost_per_unit = models.DecimalField(max_digits=18, decimal_places=6, default=0)

    stock_quantity = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    low_stock_threshold = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    supplier = models.CharField(max_length=200, blank=True, default="", db_index=True)
    last_purchase_date = models.DateField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["category", "name"]

    def __str__(self):
        return f"{self.name} ({self.base_unit})"

    def compute_cost_per_unit(self) -> Decimal:
        if not self.purchase_quantity:
            return Decimal("0")
        value = Decimal(self.purchase_cost) / Decimal(self.purchase_quantity)
        return value.quantize(Decimal("0.000001"), rounding=ROUND_HALF_UP)

    @property
    def is_low_stock(self):
        return self.stock_quantity <= self.low_stock_threshold

    def save(self, *args, **kwargs):
        self.cost_per_unit = self.compute_cost_per_unit()
        super().save(*args, **kwargs)


class MaterialPriceHistory(models.Model):
    material = models.ForeignKey(
        Material, on_delete=models.CASCADE, related_name="price_history"
    )
    purchase_quantity = models.DecimalField(max_digits=15, decimal_places=4)
    purchase_cost = models.DecimalField(max_digits=15, decimal_places=4)
    cost_per_unit = models.DecimalField(max_digits=18, decimal_places=6)
    previous_cost_per_unit = models.DecimalField(
        max_digits=18, decimal_places=6, null=True, blank=True
    )
    effective_date = models.DateTimeField(default=timezone.now, db_index=True)
    notes = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["-effective_date", "-id"]
        verbose_name_plural = "Material price history"

    def __str__(self):
        return f"{self.material.name} @ {self.cost_per_unit}"


class MaterialMovement(models.Model):
    class Reason(models.TextChoices):
        SALE = "sale", "Sale"
        PURCHASE_RECEIPT = "purchase-receipt", "Purchase receipt"
        CORRECTION = "correction", "Correction"
        MANUAL = "manual", "Manual adjustment"

    material = models.ForeignKey(
        Material, on_delete=models.CASCADE, related_name="movements"
    )
    reason = models.CharField(max_length=30, choices=Reason.choices, db_index=True)
    delta = models.DecimalField(max_digits=15, decimal_places=4)
    quantity_before = models.DecimalField(max_digits=15, decimal_places=4)
    quantity_after = models.DecimalField(max_digits=15, decimal_places=4)

    # Generic reference to the source document
    reference_type = models.CharField(max_length=50, blank=True, default="")
    reference_id = models.CharField(max_length=100, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["reference_type", "reference_id"]),
        ]

    def __str__(self):
        return f"{self.material.name} {self.delta:+} ({self.reason})"


class Product(models.Model):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    external_ref = models.CharField(
        max_length=100, unique=True, null=True, blank=True,
        help_text="Identifier of the product in the external commerce catalog",
    )
    name = models.CharField(max_length=200)
    sku = models.CharField(max_length=100, blank=True, default="", db_index=True)
    category = models.CharField(max_length=100, blank=True, default="")

    base_price = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    supplier_cost = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    unit_cost = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    combo_price_override = models.DecimalField(
        max_digits=15, decimal_places=4, null=True, blank=True
    )
    quantity_per_carton = models.PositiveIntegerField(null=True, blank=True)

    stock_quantity = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    manage_stock = models.BooleanField(default=False)
    supplier = models.CharField(max_length=200, blank=True, default="")
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name

    def effective_price(self, addon_total=Decimal("0")) -> Decimal:
        if self.combo_price_override is not None:
            return self.combo_price_override
        return self.base_price + Decimal(addon_total or 0)


class RecipeLine(models.Model):
    class Role(models.TextChoices):
        BASE = "BASE", "Base"
        MANDATORY = "MANDATORY", "Mandatory slot"
        OPTIONAL = "OPTIONAL", "Optional add-on"

    class ItemType(models.TextChoices):
        MATERIAL = "MATERIAL", "Material"
        PRODUCT = "PRODUCT", "Sub-recipe product"

    product = models.ForeignKey(
        Product, on_delete=models.CASCADE, related_name="recipe_lines"
    )
    role = models.CharField(max_length=20, choices=Role.choices, default=Role.BASE)
    # Slot id for mandatory lines, group id for optional lines
    slot_key = models.CharField(max_length=100, blank=True, default="")
    option_key = models.CharField(max_length=100, blank=True, default="")
    option_label = models.CharField(max_length=200, blank=True, default="")

    item_type = models.CharField(
        max_length=20, choices=ItemType.choices, default=ItemType.MATERIAL
    )
    material = models.ForeignKey(
        Material,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="recipe_lines",
    )
    linked_product = models.ForeignKey(
        Product,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="used_in_lines",
    )
    quantity = models.DecimalField(max_digits=15, decimal_places=4)
    unit = models.CharField(max_length=20, blank=True, default="")
    sort_order = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["product", "sort_order", "id"]

    def __str__(self):
        target = self.material or self.linked_product
        return f"{self.product.name}: {target} x {self.quantity}"


class InventoryConsumption(models.Model):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    order_id = models.CharField(max_length=100, db_index=True)
    order_item_id = models.CharField(max_length=100)

    product = models.ForeignKey(
        Product,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="consumptions",
    )
    product_name = models.CharField(max_length=200)
    material = models.ForeignKey(
        Material,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="consumptions",
    )
    material_name = models.CharField(max_length=200)

    quantity_sold = models.DecimalField(max_digits=15, decimal_places=4)
    quantity_consumed = models.DecimalField(max_digits=15, decimal_places=4)
    unit = models.CharField(max_length=20, blank=True, default="")
    unit_cost_snapshot = models.DecimalField(max_digits=18, decimal_places=6)
    total_cost = models.DecimalField(max_digits=15, decimal_places=4)

    consumed_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ["-consumed_at", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["order_id", "order_item_id", "material"],
                name="unique_consumption_per_line_material",
            ),
        ]
        indexes = [
            models.Index(fields=["order_id", "order_item_id"]),
        ]

    def __str__(self):
        return f"{self.order_id}/{self.order_item_id}: {self.material_name} x {self.quantity_consumed}"


class PurchaseOrder(models.Model):
    class Status(models.TextChoices):
        DRAFT = "DRAFT", "Draft"
        ORDERED = "ORDERED", "Ordered"
        RECEIVED = "RECEIVED", "Received"
        CANCELLED = "CANCELLED", "Cancelled"

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    po_number = models.CharField(max_length=50, unique=True)
    supplier = models.CharField(max_length=200)
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.DRAFT, db_index=True
    )

    order_date = models.DateField(default=timezone.localdate)
    expected_delivery_date = models.DateField(null=True, blank=True)
    received_date = models.DateTimeField(null=True, blank=True)

    total_amount = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    notes = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.po_number} - {self.supplier}"

    @property
    def is_editable(self):
        return self.status == self.Status.DRAFT


class PurchaseOrderItem(models.Model):
    class ItemType(models.TextChoices):
        MATERIAL = "MATERIAL", "Material"
        PRODUCT = "PRODUCT", "Product"

    purchase_order = models.ForeignKey(
        PurchaseOrder, on_delete=models.CASCADE, related_name="items"
    )
    item_type = models.CharField(max_length=20, choices=ItemType.choices)
    material = models.ForeignKey(
        Material,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="purchase_order_items",
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="purchase_order_items",
    )
    item_name = models.CharField(max_length=200)
    sku = models.CharField(max_length=100, blank=True, default="")

    quantity = models.DecimalField(max_digits=15, decimal_places=4)
    unit = models.CharField(max_length=30, blank=True, default="")
    unit_cost = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    total_cost = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    received_quantity = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    notes = models.TextField(blank=True, default="")
    sort_order = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["sort_order", "id"]

    def __str__(self):
        return f"{self.item_name} x {self.quantity}"

    @property
    def ref_id(self):
        if self.item_type == self.ItemType.MATERIAL:
            return self.material_id
        return self.product_id


class StockCheckLog(models.Model):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    performed_at = models.DateTimeField(default=timezone.now, db_index=True)
    notes = models.TextField(blank=True, default="")
    items_checked = models.PositiveIntegerField(default=0)
    items_adjusted = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-performed_at", "-id"]

    def __str__(self):
        return f"Stock check {self.performed_at:%Y-%m-%d %H:%M}"


class StockCheckLogItem(models.Model):
    class ItemType(models.TextChoices):
        MATERIAL = "MATERIAL", "Material"
        PRODUCT = "PRODUCT", "Product"

    log = models.ForeignKey(
        StockCheckLog, on_delete=models.CASCADE, related_name="items"
    )
    item_type = models.CharField(max_length=20, choices=ItemType.choices)
    ref_id = models.PositiveIntegerField()
    item_name = models.CharField(max_length=200)
    supplier = models.CharField(max_length=200, blank=True, default="")
    unit = models.CharField(max_length=30, blank=True, default="")

    expected_qty = models.DecimalField(max_digits=15, decimal_places=4)
    actual_qty = models.DecimalField(max_digits=15, decimal_places=4)
    discrepancy = models.DecimalField(max_digits=15, decimal_places=4)
    note = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["id"]
        indexes = [
            models.Index(fields=["item_type", "ref_id"]),
        ]

    def __str__(self):
        return f"{self.item_name}: {self.expected_qty} -> {self.actual_qty}"
