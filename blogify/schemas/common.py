import math

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class Pagination(CamelModel):
    current_page: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool


def build_pagination(page: int, limit: int, total: int, items_label: str) -> dict:
    """Pagination block with a ``total<Items>`` counter, e.g. ``totalPosts``."""
    total_pages = math.ceil(total / limit) if limit else 0
    pagination = Pagination(
        current_page=page,
        total_pages=total_pages,
        has_next_page=page < total_pages,
        has_prev_page=page > 1,
    ).model_dump(by_alias=True)
    pagination[f"total{items_label}"] = total
    return pagination
