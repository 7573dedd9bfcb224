import math

from pydantic import BaseModel, Field


class PaginationParams(BaseModel):
    page: int = Field(1, ge=1)
    page_size: int = Field(20, ge=1)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        return self.page_size


class PaginationResult(BaseModel):
    total: int
    page: int
    page_size: int
    pages: int

    @classmethod
    def from_total(cls, total: int, params: PaginationParams) -> "PaginationResult":
        pages = math.ceil(total / params.page_size) if total else 0
        return cls(total=total, page=params.page, page_size=params.page_size, pages=pages)
