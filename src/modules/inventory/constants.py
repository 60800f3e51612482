"""Inventory domain constants."""

from django.db import models


class ItemCategory(models.TextChoices):
    GRAINS = "grains", "Grains"
    VEGETABLES = "vegetables", "Vegetables"
    FRUITS = "fruits", "Fruits"
    DAIRY = "dairy", "Dairy"
    OTHER = "other", "Other"


# Keyword lists are matched as substrings of the lower-cased item name,
# in this order; the first hit wins.
CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    ItemCategory.GRAINS: ("rice", "wheat", "corn", "barley"),
    ItemCategory.VEGETABLES: ("tomato", "onion", "potato", "carrot"),
    ItemCategory.FRUITS: ("apple", "mango", "banana", "orange"),
    ItemCategory.DAIRY: ("milk", "cheese", "yogurt"),
}
