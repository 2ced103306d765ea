"""
Tests for stock.services.resolution: pure recipe flattening, no database.
"""

from decimal import Decimal

import pytest

from stock.services.base_service import (
    DataConsistencyError, MissingSelectionError, ValidationError,
)
from stock.services.resolution import (
    Base, BundleSelection, LineSpec, MandatorySlot, MaterialTarget,
    OptionalGroup, SubRecipeTarget, resolve_lines,
)


BEANS, MILK, OAT, CUP, SYRUP = 1, 2, 3, 4, 5


def base(material_id, qty):
    return LineSpec(role=Base(), target=MaterialTarget(material_id), quantity=Decimal(qty))


def mandatory(slot, option, material_id, qty):
    return LineSpec(role=MandatorySlot(slot), target=MaterialTarget(material_id),
                    quantity=Decimal(qty), option_id=option)


def optional(group, option, material_id, qty):
    return LineSpec(role=OptionalGroup(group), target=MaterialTarget(material_id),
                    quantity=Decimal(qty), option_id=option)


LATTE = [
    base(BEANS, "18"),
    base(CUP, "1"),
    mandatory("milk", "dairy", MILK, "200"),
    mandatory("milk", "oat", OAT, "200"),
    optional("extras", "vanilla", SYRUP, "15"),
]


class TestBaseLines:
    def test_scales_by_quantity_sold(self):
        result = resolve_lines([base(BEANS, "18"), base(CUP, "1")], Decimal("3"))
        assert dict(result) == {BEANS: Decimal("54"), CUP: Decimal("3")}

    def test_no_lines_resolves_to_nothing(self):
        assert resolve_lines([], Decimal("1")) == []

    def test_same_material_is_merged(self):
        result = resolve_lines([base(BEANS, "18"), base(BEANS, "9")], Decimal("2"))
        assert result == [(BEANS, Decimal("54"))]

    @pytest.mark.parametrize("quantity", ["0", "-1"])
    def test_quantity_must_be_positive(self, quantity):
        with pytest.raises(ValidationError):
            resolve_lines([base(BEANS, "18")], Decimal(quantity))


class TestMandatorySlots:
    def test_chosen_option_is_consumed(self):
        selection = BundleSelection(mandatory={"milk": "oat"})
        result = dict(resolve_lines(LATTE, Decimal("2"), selection))
        assert result == {BEANS: Decimal("36"), CUP: Decimal("2"), OAT: Decimal("400")}
        assert MILK not in result

    def test_missing_choice_names_the_slot(self):
        with pytest.raises(MissingSelectionError) as exc:
            resolve_lines(LATTE, Decimal("1"), BundleSelection())
        assert exc.value.slot_id == "milk"
        assert exc.value.code == "MISSING_SELECTION"

    def test_option_from_another_slot_is_rejected(self):
        with pytest.raises(ValidationError):
            resolve_lines(LATTE, Decimal("1"), BundleSelection(mandatory={"milk": "soy"}))


class TestOptionalLines:
    def test_selected_option_is_added(self):
        selection = BundleSelection(mandatory={"milk": "dairy"}, optional=("vanilla",))
        result = dict(resolve_lines(LATTE, Decimal("1"), selection))
        assert result[SYRUP] == Decimal("15")

    def test_unselected_option_is_skipped(self):
        selection = BundleSelection(mandatory={"milk": "dairy"})
        assert SYRUP not in dict(resolve_lines(LATTE, Decimal("1"), selection))

    def test_unknown_optional_ids_are_ignored(self):
        selection = BundleSelection(mandatory={"milk": "dairy"}, optional=("caramel",))
        assert len(resolve_lines(LATTE, Decimal("1"), selection)) == 3


class TestSubRecipes:
    SHOT = 10

    def loader(self, recipes):
        return lambda product_id: recipes[product_id]

    def test_expands_base_lines_one_level(self):
        lines = [
            LineSpec(role=Base(), target=SubRecipeTarget(self.SHOT), quantity=Decimal("2")),
            base(CUP, "1"),
        ]
        recipes = {self.SHOT: [base(BEANS, "18")]}
        result = dict(resolve_lines(lines, Decimal("3"), load_sub_recipe=self.loader(recipes)))
        assert result == {BEANS: Decimal("108"), CUP: Decimal("3")}

    def test_sub_recipe_inside_a_slot_option(self):
        lines = [
            LineSpec(role=MandatorySlot("drink"), target=SubRecipeTarget(self.SHOT),
                     quantity=Decimal("1"), option_id="espresso"),
        ]
        recipes = {self.SHOT: [base(BEANS, "18"), optional("x", "y", SYRUP, "5")]}
        result = resolve_lines(lines, Decimal("1"), BundleSelection(mandatory={"drink": "espresso"}),
                               load_sub_recipe=self.loader(recipes))
        assert result == [(BEANS, Decimal("18"))]

    def test_sub_recipe_with_mandatory_slot_is_inconsistent(self):
        lines = [LineSpec(role=Base(), target=SubRecipeTarget(self.SHOT), quantity=Decimal("1"))]
        recipes = {self.SHOT: [mandatory("milk", "dairy", MILK, "100")]}
        with pytest.raises(DataConsistencyError):
            resolve_lines(lines, Decimal("1"), load_sub_recipe=self.loader(recipes))

    def test_nested_sub_recipe_is_inconsistent(self):
        lines = [LineSpec(role=Base(), target=SubRecipeTarget(self.SHOT), quantity=Decimal("1"))]
        recipes = {self.SHOT: [LineSpec(role=Base(), target=SubRecipeTarget(11), quantity=Decimal("1"))]}
        with pytest.raises(DataConsistencyError):
            resolve_lines(lines, Decimal("1"), load_sub_recipe=self.loader(recipes))


class TestMissingMaterials:
    def test_line_without_material(self):
        with pytest.raises(DataConsistencyError):
            resolve_lines([base(None, "1")], Decimal("1"))

    def test_material_that_no_longer_exists(self):
        with pytest.raises(DataConsistencyError) as exc:
            resolve_lines([base(BEANS, "18"), base(CUP, "1")], Decimal("1"),
                          material_exists=lambda material_id: material_id != CUP)
        assert exc.value.details["material_id"] == CUP


class TestBundleSelection:
    def test_from_camel_case_payload(self):
        selection = BundleSelection.from_dict({
            "selectedMandatory": {"milk": "oat"},
            "selectedOptional": ["vanilla"],
        })
        assert selection.mandatory == {"milk": "oat"}
        assert selection.optional == ("vanilla",)

    def test_empty_payload(self):
        assert BundleSelection.from_dict(None) == BundleSelection()

    def test_blank_choice_counts_as_missing(self):
        selection = BundleSelection.from_dict({"selected_mandatory": {"milk": ""}})
        with pytest.raises(MissingSelectionError):
            resolve_lines(LATTE, Decimal("1"), selection)

    def test_optional_must_be_a_list(self):
        with pytest.raises(ValidationError):
            BundleSelection.from_dict({"selected_optional": "vanilla"})
