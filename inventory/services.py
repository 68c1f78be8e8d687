import logging
from decimal import Decimal, InvalidOperation

from django.db import transaction
from rest_framework.exceptions import NotFound, ValidationError

from common.exceptions import ConflictError
from common.utils import parse_uuid, round_half_up
from inventory.models import DailyStockRecord, Item, Recipe, RecipeComponent
from sales.models import Sale

logger = logging.getLogger(__name__)

QUANTITY_QUANT = Decimal("0.0001")
NON_NEGATIVE_INT_FIELDS = ("cost_price", "selling_price", "min_stock")


def _parse_bool(value):
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def list_items(*, is_ingredient=None, is_active=None, category=None):
    qs = Item.objects.all()
    if is_ingredient not in (None, ""):
        qs = qs.filter(is_ingredient=_parse_bool(is_ingredient))
    if is_active not in (None, ""):
        qs = qs.filter(is_active=_parse_bool(is_active))
    if category:
        qs = qs.filter(category=category)
    return qs


def get_item(item_id):
    item = Item.objects.filter(id=parse_uuid(item_id, "item_id")).first()
    if item is None:
        raise NotFound("Item was not found.")
    return item


def validate_item_values(values):
    errors = {}
    for field in NON_NEGATIVE_INT_FIELDS:
        if field not in values:
            continue
        value = values[field]
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            errors[field] = f"{field} must be a non-negative integer."
    if errors:
        raise ValidationError(errors)
    return values


def create_item(**values):
    validate_item_values(values)
    return Item.objects.create(**values)


def update_item(item, **values):
    """Apply ``values`` to ``item`` and keep dependent recipe costs current."""
    validate_item_values(values)
    cost_changed = "cost_price" in values and values["cost_price"] != item.cost_price

    with transaction.atomic():
        for field, value in values.items():
            setattr(item, field, value)
        if cost_changed and not item.is_ingredient:
            # A manual price; the next recipe save derives it again.
            item.cost_is_derived = False
        item.save()

        if cost_changed and item.is_ingredient:
            recompute_costs_using_ingredient(item)
    return item


def item_has_history(item):
    return (
        Sale.objects.filter(item=item).exists()
        or DailyStockRecord.objects.filter(item=item).exists()
        or RecipeComponent.objects.filter(ingredient=item).exists()
    )


def delete_item(item):
    if item_has_history(item):
        raise ConflictError("Item has sales, stock or recipe history. Deactivate it instead.")
    item.delete()


def recompute_cost_from_recipe(item):
    """Derive ``item.cost_price`` from its recipe and persist it."""
    recipe = Recipe.objects.filter(menu_item=item).prefetch_related("components__ingredient").first()
    if recipe is None:
        return item.cost_price

    total = sum(
        (component.quantity_per_unit * component.ingredient.cost_price for component in recipe.components.all()),
        Decimal("0"),
    )
    item.cost_price = round_half_up(total)
    item.cost_is_derived = True
    item.save(update_fields=["cost_price", "cost_is_derived", "updated_at"])
    return item.cost_price


def recompute_costs_using_ingredient(ingredient):
    updated = []
    recipes = Recipe.objects.filter(components__ingredient=ingredient).select_related("menu_item").distinct()
    for recipe in recipes:
        recompute_cost_from_recipe(recipe.menu_item)
        updated.append(recipe.menu_item)
    return updated


def get_recipe_by_menu_item(item_id):
    return (
        Recipe.objects.filter(menu_item_id=parse_uuid(item_id, "item_id"))
        .select_related("menu_item")
        .prefetch_related("components__ingredient")
        .first()
    )


def _clean_components(menu_item, components):
    if not components:
        raise ValidationError({"components": "A recipe needs at least one component."})

    ingredient_ids = []
    cleaned = []
    for index, component in enumerate(components):
        if not isinstance(component, dict):
            raise ValidationError({"components": {index: "Each component must be an object."}})
        ingredient_id = component.get("ingredient_id") or component.get("ingredient")
        if not ingredient_id:
            raise ValidationError({"components": {index: "ingredient_id is required."}})
        ingredient_id = parse_uuid(ingredient_id, "ingredient_id")
        try:
            quantity = Decimal(str(component.get("quantity_per_unit", component.get("quantity"))))
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError({"components": {index: "quantity_per_unit must be a number."}})
        if quantity.is_finite():
            quantity = quantity.quantize(QUANTITY_QUANT)
        if not quantity.is_finite() or quantity <= 0:
            raise ValidationError({"components": {index: "quantity_per_unit must be greater than zero."}})
        if str(ingredient_id) == str(menu_item.id):
            raise ValidationError({"components": {index: "A menu item cannot be its own ingredient."}})
        if str(ingredient_id) in ingredient_ids:
            raise ValidationError({"components": {index: "Ingredient is listed more than once."}})
        ingredient_ids.append(str(ingredient_id))
        cleaned.append((str(ingredient_id), quantity, component.get("unit")))

    ingredients = {str(item.id): item for item in Item.objects.filter(id__in=ingredient_ids)}
    rows = []
    for index, (ingredient_id, quantity, unit) in enumerate(cleaned):
        ingredient = ingredients.get(ingredient_id)
        if ingredient is None:
            raise NotFound(f"Ingredient {ingredient_id} was not found.")
        if not ingredient.is_ingredient:
            raise ValidationError({"components": {index: f"{ingredient.name} is not an ingredient."}})
        unit = unit or ingredient.unit
        if unit not in Item.Unit.values:
            raise ValidationError({"components": {index: f"Unsupported unit: {unit}."}})
        rows.append((ingredient, quantity, unit))
    return rows


def upsert_recipe(item_id, components):
    """Replace the recipe of menu item ``item_id`` with ``components``.

    ``components`` is a list of ``{"ingredient_id", "quantity_per_unit", "unit"}``
    mappings. The menu item's cost is re-derived from the new recipe.
    """
    menu_item = get_item(item_id)
    if menu_item.is_ingredient:
        raise ValidationError({"item_id": "Recipes can only be attached to menu items."})
    rows = _clean_components(menu_item, components)

    with transaction.atomic():
        recipe, _ = Recipe.objects.select_for_update().get_or_create(menu_item=menu_item)
        recipe.components.all().delete()
        RecipeComponent.objects.bulk_create(
            [
                RecipeComponent(recipe=recipe, ingredient=ingredient, quantity_per_unit=quantity, unit=unit)
                for ingredient, quantity, unit in rows
            ]
        )
        recipe.save(update_fields=["updated_at"])
        recompute_cost_from_recipe(menu_item)

    logger.info("recipe_saved components=%s", len(rows), extra={"item_id": str(menu_item.id)})
    return get_recipe_by_menu_item(menu_item.id)


def delete_recipe(item_id):
    recipe = get_recipe_by_menu_item(item_id)
    if recipe is None:
        raise NotFound("Recipe was not found.")
    if Sale.objects.filter(item_id=item_id).exists():
        raise ConflictError("Menu item has sales history; its recipe cannot be deleted.")
    recipe.delete()
