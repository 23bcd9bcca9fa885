import math
from typing import Generic, List, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class ApiModel(BaseModel):
    """Base schema: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        str_strip_whitespace=True,
    )


class Page(ApiModel, Generic[T]):
    items: List[T]
    total: int
    page: int
    size: int
    pages: int

    @classmethod
    def build(cls, items, total: int, page: int, size: int):
        pages = math.ceil(total / size) if total > 0 else 1
        # items могут быть ORM-объектами
        return cls.model_validate(
            {"items": items, "total": total, "page": page, "size": size, "pages": pages},
            from_attributes=True,
        )


class MessageResponse(ApiModel):
    message: str
