"""列表分頁 (DEFAULT_PAGINATION_CLASS 指向這裡，只能依賴 rest_framework.pagination)"""
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class StandardPagination(PageNumberPagination):
    page_size = 20
    page_query_param = "page"
    page_size_query_param = "limit"
    max_page_size = 200

    def get_paginated_response(self, data):
        return Response(
            {
                "success": True,
                "data": data,
                "pagination": {
                    "page": self.page.number,
                    "limit": self.page.paginator.per_page,
                    "total": self.page.paginator.count,
                    "totalPages": self.page.paginator.num_pages,
                },
            }
        )
