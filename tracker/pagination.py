# tracker/pagination.py
import math

from django.conf import settings
from rest_framework import serializers


def paginate(queryset, page=1, page_size=None):
    """
    Slice a queryset into one page.

    Returns ``{"data": [...], "meta": {"total", "page", "page_size", "total_pages"}}``.
    Pages past the end come back with empty ``data`` rather than raising.
    """
    page_size = page_size or settings.PAGE_SIZE_DEFAULT
    total = queryset.count()
    offset = (page - 1) * page_size
    rows = list(queryset[offset:offset + page_size])
    return {
        'data': rows,
        'meta': {
            'total': total,
            'page': page,
            'page_size': page_size,
            'total_pages': math.ceil(total / page_size),
        },
    }


class PaginationQuerySerializer(serializers.Serializer):
    page = serializers.IntegerField(min_value=1, default=1)
    page_size = serializers.IntegerField(
        min_value=1,
        max_value=settings.PAGE_SIZE_MAX,
        default=settings.PAGE_SIZE_DEFAULT,
    )


def paginated_response_data(page, serializer_class, context=None):
    """Serialize the rows of a page produced by ``paginate``."""
    return {
        'data': serializer_class(page['data'], many=True, context=context or {}).data,
        'meta': page['meta'],
    }
