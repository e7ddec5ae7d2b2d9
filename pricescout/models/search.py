"""Search request models accepted at the orchestrator boundary."""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from pricescout.models.data_models import Availability


SortField = Literal["price", "rating", "reviewCount", "lastScraped"]
SortDirection = Literal["asc", "desc"]


class SearchFilters(BaseModel):
    """Optional constraints applied to merged listings; all are ANDed."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    min_price: Optional[int] = Field(default=None, ge=0, description="Inclusive lower bound, minor units")
    max_price: Optional[int] = Field(default=None, ge=0, description="Inclusive upper bound, minor units")
    availability: Optional[Availability] = None
    min_rating: Optional[float] = Field(default=None, ge=0, le=5)
    sources: Optional[List[str]] = None

    @model_validator(mode='after')
    def check_price_bounds(self) -> "SearchFilters":
        if (
            self.min_price is not None
            and self.max_price is not None
            and self.min_price > self.max_price
        ):
            raise ValueError(f"min_price {self.min_price} exceeds max_price {self.max_price}")
        return self

    def is_empty(self) -> bool:
        return all(value is None for value in self.model_dump().values())


class SortOrder(BaseModel):
    """Requested ordering of results."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    field: SortField
    direction: SortDirection = "asc"

    @field_validator('field', mode='before')
    @classmethod
    def accept_snake_case(cls, v):
        """Allow ``review_count`` and ``last_scraped`` spellings."""
        if isinstance(v, str) and "_" in v:
            return to_camel(v)
        return v


class SearchRequest(BaseModel):
    """One caller search."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    query: str = Field(min_length=3, max_length=500)
    sources: Optional[List[str]] = Field(default=None, description="Restrict to these source ids")
    max_results: int = Field(default=50, ge=1, le=100)
    filters: Optional[SearchFilters] = None
    sort: Optional[SortOrder] = None

    @field_validator('query')
    @classmethod
    def strip_query(cls, v: str) -> str:
        stripped = v.strip()
        if len(stripped) < 3:
            raise ValueError("Search query must be at least 3 characters")
        return stripped
