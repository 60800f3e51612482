import django_filters

from modules.inventory.models import InventoryRecord


class InventoryRecordFilter(django_filters.FilterSet):
    category = django_filters.CharFilter(field_name="category", lookup_expr="iexact")
    location = django_filters.CharFilter(field_name="location", lookup_expr="iexact")
    item_name = django_filters.CharFilter(
        field_name="item_name", lookup_expr="icontains"
    )

    class Meta:
        model = InventoryRecord
        fields = ["category", "location", "item_name"]
