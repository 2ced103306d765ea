from decimal import Decimal

import pytest

from stock.models import Material, Product, RecipeLine
from stock.services import (
    DataConsistencyError, MissingSelectionError, NotFoundError,
    ProductService, RecipeService, ValidationError,
)

pytestmark = pytest.mark.django_db


class TestResolve:
    def test_base_and_chosen_option(self, latte, beans, cup, oat_milk):
        resolved = RecipeService.resolve(latte.id, 2, {"selected_mandatory": {"milk": "oat"}})

        assert dict(resolved) == {
            beans.id: Decimal("36"),
            cup.id: Decimal("2"),
            oat_milk.id: Decimal("400"),
        }

    def test_missing_slot_choice(self, latte):
        with pytest.raises(MissingSelectionError):
            RecipeService.resolve(latte.id, 1)

    def test_sub_recipe_expansion(self, double_bundle, beans, cup):
        resolved = dict(RecipeService.resolve(double_bundle.id, 1))
        assert resolved == {beans.id: Decimal("36"), cup.id: Decimal("1")}

    def test_deleted_material_is_a_consistency_error(self, latte, cup):
        cup.delete()
        with pytest.raises(DataConsistencyError):
            RecipeService.resolve(latte.id, 1, {"selected_mandatory": {"milk": "dairy"}})

    def test_product_without_recipe(self, croissant):
        assert RecipeService.resolve(croissant.id, 3) == []

    def test_unknown_product(self):
        with pytest.raises(NotFoundError):
            RecipeService.resolve(12345, 1)


class TestRecipeEditing:
    def test_replace_recipe(self, espresso_shot, beans, cup):
        result = RecipeService.replace_recipe(espresso_shot.id, [
            {"material_id": beans.id, "quantity": "20"},
            {"material_id": cup.id, "quantity": "1"},
        ])

        assert [line["material_name"] for line in result["base"]] == ["Espresso Beans", "Paper Cup 12oz"]
        assert RecipeLine.objects.filter(product=espresso_shot).count() == 2

    def test_replace_recipe_refreshes_unit_cost(self, espresso_shot, beans, cup):
        RecipeService.replace_recipe(espresso_shot.id, [
            {"material_id": beans.id, "quantity": "20"},
            {"material_id": cup.id, "quantity": "1"},
        ])

        espresso_shot.refresh_from_db()
        # 20g x 0.045 + 1 cup x 0.20
        assert espresso_shot.unit_cost == Decimal("1.1")

    def test_grouping_by_role(self, latte):
        result = RecipeService.get_recipe(latte.id)

        assert len(result["base"]) == 2
        assert result["mandatory_slots"][0]["slot_key"] == "milk"
        assert len(result["mandatory_slots"][0]["lines"]) == 2
        assert result["optional_groups"][0]["group_key"] == "extras"

    def test_invalid_line_leaves_recipe_untouched(self, espresso_shot, beans):
        with pytest.raises(ValidationError):
            RecipeService.replace_recipe(espresso_shot.id, [
                {"material_id": beans.id, "quantity": "20"},
                {"material_id": beans.id, "quantity": "0"},
            ])
        assert RecipeLine.objects.filter(product=espresso_shot).count() == 1

    def test_slot_lines_need_keys(self, espresso_shot, milk):
        with pytest.raises(ValidationError):
            RecipeService.add_line(espresso_shot.id, role="mandatory", material_id=milk.id, quantity="100")

    def test_product_cannot_contain_itself(self, espresso_shot):
        with pytest.raises(ValidationError):
            RecipeService.add_line(espresso_shot.id, item_type="product",
                                   linked_product_id=espresso_shot.id, quantity="1")

    def test_sub_recipe_with_slots_is_rejected(self, latte, espresso_shot):
        with pytest.raises(ValidationError):
            RecipeService.add_line(espresso_shot.id, item_type="product",
                                   linked_product_id=latte.id, quantity="1")

    def test_unknown_material(self, espresso_shot):
        with pytest.raises(NotFoundError):
            RecipeService.add_line(espresso_shot.id, material_id=999, quantity="1")


class TestProductCosting:
    def test_estimate_cost_for_a_bundle(self, latte):
        result = ProductService.estimate_cost(
            latte.id, 1, {"selected_mandatory": {"milk": "oat"}, "selected_optional": ["vanilla"]}
        )

        # 18 x 0.045 + 1 x 0.2 + 200 x 0.012 + 15 x 0.04
        assert Decimal(result["material_cost"]) == Decimal("4.01")
        assert Decimal(result["total_cost"]) == Decimal("4.01")
        assert Decimal(result["margin"]) == Decimal("12.90") - Decimal("4.01")

    def test_refresh_unit_cost_uses_base_lines_only(self, latte):
        latte.supplier_cost = Decimal("0.50")
        latte.save()

        unit_cost = ProductService.refresh_unit_cost(latte.id)

        assert unit_cost == Decimal("1.51")

    def test_combo_price_override_wins(self, latte):
        latte.combo_price_override = Decimal("10.00")
        assert latte.effective_price(Decimal("3.00")) == Decimal("10.00")
        latte.combo_price_override = None
        assert latte.effective_price(Decimal("3.00")) == Decimal("15.90")

    def test_lookup_by_external_ref(self, latte):
        assert ProductService.get_by_external_ref("wc-101").id == latte.id
        with pytest.raises(NotFoundError):
            ProductService.get_by_external_ref("wc-999")

    def test_duplicate_external_ref(self, latte):
        with pytest.raises(ValidationError):
            ProductService.create(name="Latte Copy", external_ref="wc-101")
