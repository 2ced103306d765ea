"""
Recipe resolution.

Turns a product's recipe lines plus a bundle selection into a flat list of
(material_id, quantity) pairs. Nothing in here touches the database: the
caller hands in the lines, a loader for sub-recipes and a material existence
check, so the algorithm can be exercised with plain objects.

Line roles:
    Base            always consumed
    MandatorySlot   exactly one option per slot must be chosen
    OptionalGroup   consumed only when its option id is selected

Line targets:
    MaterialTarget  a raw material
    SubRecipeTarget another product whose base lines are expanded one level
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from stock.services.base_service import (
    DataConsistencyError, MissingSelectionError, ValidationError,
)


@dataclass(frozen=True)
class Base:
    pass


@dataclass(frozen=True)
class MandatorySlot:
    slot_id: str


@dataclass(frozen=True)
class OptionalGroup:
    group_id: str


Role = Union[Base, MandatorySlot, OptionalGroup]


@dataclass(frozen=True)
class MaterialTarget:
    material_id: Optional[int]


@dataclass(frozen=True)
class SubRecipeTarget:
    product_id: Optional[int]


Target = Union[MaterialTarget, SubRecipeTarget]


@dataclass(frozen=True)
class LineSpec:
    role: Role
    target: Target
    quantity: Decimal
    option_id: Optional[str] = None
    line_id: Optional[int] = None


@dataclass(frozen=True)
class BundleSelection:
    mandatory: Mapping[str, str] = field(default_factory=dict)
    optional: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Optional[Mapping]) -> "BundleSelection":
        """Accepts both snake_case and the camelCase keys order sources send."""
        if not data:
            return cls()
        if isinstance(data, BundleSelection):
            return data
        mandatory = data.get("selected_mandatory", data.get("selectedMandatory")) or {}
        optional = data.get("selected_optional", data.get("selectedOptional")) or []
        if not isinstance(mandatory, Mapping):
            raise ValidationError("selected_mandatory must be an object", "selected_mandatory")
        if isinstance(optional, (str, bytes)) or not isinstance(optional, Iterable):
            raise ValidationError("selected_optional must be a list", "selected_optional")
        return cls(
            mandatory={str(k): str(v) for k, v in mandatory.items() if v not in (None, "")},
            optional=tuple(str(o) for o in optional),
        )

    def to_dict(self) -> Dict:
        return {
            "selected_mandatory": dict(self.mandatory),
            "selected_optional": list(self.optional),
        }


SubRecipeLoader = Callable[[int], Sequence[LineSpec]]
MaterialExists = Callable[[int], bool]


def resolve_lines(lines: Sequence[LineSpec],
                  quantity_sold: Decimal,
                  selection: Optional[BundleSelection] = None,
                  load_sub_recipe: Optional[SubRecipeLoader] = None,
                  material_exists: Optional[MaterialExists] = None) -> List[Tuple[int, Decimal]]:
    quantity_sold = Decimal(quantity_sold)
    if quantity_sold <= 0:
        raise ValidationError("Quantity sold must be greater than zero", "quantity")

    selection = selection or BundleSelection()
    totals: Dict[int, Decimal] = {}

    def add_material(material_id, quantity, line):
        if material_id is None or (material_exists and not material_exists(material_id)):
            raise DataConsistencyError(
                f"Recipe line references a missing material: {material_id}",
                {"line_id": line.line_id, "material_id": material_id},
            )
        totals[material_id] = totals.get(material_id, Decimal("0")) + quantity

    def add_line(line: LineSpec):
        quantity = line.quantity * quantity_sold
        target = line.target
        if isinstance(target, MaterialTarget):
            add_material(target.material_id, quantity, line)
            return

        if target.product_id is None or load_sub_recipe is None:
            raise DataConsistencyError(
                f"Recipe line references a missing sub-recipe: {target.product_id}",
                {"line_id": line.line_id, "product_id": target.product_id},
            )
        for sub in load_sub_recipe(target.product_id):
            if isinstance(sub.role, MandatorySlot):
                raise DataConsistencyError(
                    f"Sub-recipe {target.product_id} has mandatory slots and cannot be nested",
                    {"line_id": line.line_id, "product_id": target.product_id},
                )
            if not isinstance(sub.role, Base):
                continue
            if isinstance(sub.target, SubRecipeTarget):
                raise DataConsistencyError(
                    f"Sub-recipe {target.product_id} nests another sub-recipe",
                    {"line_id": line.line_id, "product_id": target.product_id},
                )
            add_material(sub.target.material_id, sub.quantity * quantity, sub)

    slots: Dict[str, List[LineSpec]] = {}
    for line in lines:
        if isinstance(line.role, MandatorySlot):
            slots.setdefault(line.role.slot_id, []).append(line)

    for line in lines:
        if isinstance(line.role, Base):
            add_line(line)

    for slot_id, slot_lines in slots.items():
        chosen = selection.mandatory.get(slot_id)
        if not chosen:
            raise MissingSelectionError(slot_id)
        chosen_lines = [l for l in slot_lines if l.option_id == chosen]
        if not chosen_lines:
            raise ValidationError(
                f"Option {chosen} does not belong to slot {slot_id}",
                "selected_mandatory",
                {"slot_id": slot_id, "option_id": chosen},
            )
        for line in chosen_lines:
            add_line(line)

    selected_optional = set(selection.optional)
    for line in lines:
        if isinstance(line.role, OptionalGroup) and line.option_id in selected_optional:
            add_line(line)

    return list(totals.items())
