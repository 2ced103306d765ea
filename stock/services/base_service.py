from typing import Dict, Any, Optional, List, Tuple
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from datetime import date, timedelta
from django.conf import settings
from django.db.models import Model
from django.db.models.functions import Length
from django.utils import timezone


class ServiceError(Exception):
    def __init__(self, message: str, code: str = "ERROR", details: Dict = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)


class ValidationError(ServiceError):
    def __init__(self, message: str, field: str = None, details: Dict = None):
        super().__init__(message, "VALIDATION_ERROR", details)
        self.field = field


class NotFoundError(ServiceError):
    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            f"{resource} not found: {identifier}",
            "NOT_FOUND",
            {"resource": resource, "identifier": str(identifier)}
        )


class InvalidStateError(ServiceError):
    def __init__(self, message: str, state: str = None):
        super().__init__(message, "INVALID_STATE", {"state": state})
        self.state = state


class MissingSelectionError(ServiceError):
    def __init__(self, slot_id: str):
        super().__init__(
            f"No option selected for mandatory slot: {slot_id}",
            "MISSING_SELECTION",
            {"slot_id": slot_id}
        )
        self.slot_id = slot_id


class DataConsistencyError(ServiceError):
    """Stored data contradicts itself, e.g. a recipe line pointing at a material that is gone."""

    def __init__(self, message: str, details: Dict = None):
        super().__init__(message, "DATA_CONSISTENCY", details)


def success_response(data: Any = None, message: str = "Success") -> Dict:
    response = {"success": True, "message": message}
    if data is not None:
        if isinstance(data, dict):
            response.update(data)
        else:
            response["data"] = data
    return response


def paginate_queryset(queryset, page: int = 1, per_page: int = 20) -> Tuple[List, Dict]:
    max_per_page = getattr(settings, "STOCK_MAX_PAGE_SIZE", 100)
    page = max(1, page)
    per_page = min(max(1, per_page), max_per_page)

    total = queryset.count()
    total_pages = (total + per_page - 1) // per_page

    offset = (page - 1) * per_page
    items = list(queryset[offset:offset + per_page])

    return items, {
        "page": page,
        "per_page": per_page,
        "total_items": total,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_prev": page > 1
    }


def to_decimal(value: Any, default: Decimal = Decimal("0")) -> Decimal:
    if value is None or value == "":
        return default
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return default


def require_decimal(value: Any, field: str, allow_zero: bool = False,
                    allow_negative: bool = False) -> Decimal:
    """Parse a numeric input or raise ValidationError naming the field."""
    if value is None or value == "":
        raise ValidationError(f"{field} is required", field)
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{field} must be a number", field)
    if not number.is_finite():
        raise ValidationError(f"{field} must be a number", field)
    if number < 0 and not allow_negative:
        raise ValidationError(f"{field} cannot be negative", field)
    if number == 0 and not allow_zero:
        raise ValidationError(f"{field} must be greater than zero", field)
    return number


def round_decimal(value: Decimal, places: int = 4) -> Decimal:
    if value is None:
        return Decimal("0")
    quantize_str = "0." + "0" * places
    return value.quantize(Decimal(quantize_str), rounding=ROUND_HALF_UP)


def generate_number(prefix: str, model_class: Model, field: str = "order_number",
                    date_format: str = "%Y%m%d") -> str:
    today = timezone.localtime()
    date_part = today.strftime(date_format)
    filter_kwargs = {f"{field}__startswith": f"{prefix}-{date_part}-"}
    # Longer suffix means a bigger sequence once it passes the zero padding
    last = model_class.objects.filter(**filter_kwargs).annotate(
        number_length=Length(field)
    ).order_by("-number_length", f"-{field}").first()

    if last:
        last_num = getattr(last, field)
        try:
            seq = int(last_num.split("-")[-1]) + 1
        except ValueError:
            seq = 1
    else:
        seq = 1

    return f"{prefix}-{date_part}-{seq:04d}"


def get_date_range(period: str) -> Tuple[date, date]:
    today = timezone.localdate()

    if period == "today":
        return today, today
    elif period == "yesterday":
        return today - timedelta(days=1), today - timedelta(days=1)
    elif period == "this_week":
        start = today - timedelta(days=today.weekday())
        return start, today
    elif period == "this_month":
        return today.replace(day=1), today
    elif period == "last_month":
        first_of_month = today.replace(day=1)
        last_month_end = first_of_month - timedelta(days=1)
        return last_month_end.replace(day=1), last_month_end
    elif period.startswith("last_") and period.endswith("_days"):
        try:
            days = int(period.replace("last_", "").replace("_days", ""))
            return today - timedelta(days=days), today
        except ValueError:
            pass

    return today, today


class BaseService:
    model = None

    @classmethod
    def get_by_id(cls, id: int) -> Optional[Model]:
        try:
            return cls.model.objects.get(id=id)
        except (cls.model.DoesNotExist, ValueError, TypeError):
            return None

    @classmethod
    def get_or_404(cls, id: int) -> Model:
        obj = cls.get_by_id(id)
        if not obj:
            raise NotFoundError(cls.model.__name__, id)
        return obj

    @classmethod
    def get_active(cls):
        if hasattr(cls.model, 'is_active'):
            return cls.model.objects.filter(is_active=True)
        return cls.model.objects.all()
