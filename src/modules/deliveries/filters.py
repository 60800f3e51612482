import django_filters

from modules.deliveries.models import Delivery


class DeliveryFilter(django_filters.FilterSet):
    """Narrows the caller's visible deliveries; never widens them."""

    status = django_filters.CharFilter(field_name="status", lookup_expr="iexact")
    urgency = django_filters.CharFilter(field_name="urgency", lookup_expr="iexact")
    farmer = django_filters.CharFilter(field_name="farmer_id")
    transporter = django_filters.CharFilter(field_name="transporter_id")
    warehouse = django_filters.CharFilter(field_name="warehouse_id")
    start_date = django_filters.DateFilter(
        field_name="created_at", lookup_expr="date__gte"
    )
    end_date = django_filters.DateFilter(
        field_name="created_at", lookup_expr="date__lte"
    )

    class Meta:
        model = Delivery
        fields = [
            "status",
            "urgency",
            "farmer",
            "transporter",
            "warehouse",
            "start_date",
            "end_date",
        ]
