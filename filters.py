"""
Product filters and the predicate builder.

A filter is compiled into two predicate trees:

* the product match runs against product documents in the store, before
  any join, to prune the working set;
* the variant match runs in memory against the representative variant of
  each surviving product, because price lives on the variant.

Every node translates itself to a Mongo query fragment (``to_mongo``) and
can evaluate itself against a plain mapping (``matches``), so both trees
are testable without a database.
"""
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Tuple

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from schemas import SortKey

BRAND_WILDCARDS = {"todas", "all"}


class ProductFilter(BaseModel):
    """What the aggregation engine is asked for. Prices are minor units."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    search: Optional[str] = None
    category_id: Optional[str] = None
    seller_id: Optional[str] = None
    brand: Optional[str] = None
    status: Optional[str] = None
    id: Optional[str] = None
    slug: Optional[str] = None
    min_price: Optional[int] = Field(None, ge=0)
    max_price: Optional[int] = Field(None, ge=0)
    has_discount: Optional[bool] = None
    free_shipping: Optional[bool] = None
    sort: Optional[SortKey] = None
    limit: Optional[int] = Field(None, ge=0)
    offset: int = Field(0, ge=0)

    @property
    def is_lookup(self) -> bool:
        return bool(self.id or self.slug)


class Predicate(ABC):
    @abstractmethod
    def to_mongo(self) -> dict:
        """Mongo query fragment for this node."""

    @abstractmethod
    def matches(self, doc: Mapping[str, Any]) -> bool:
        """Evaluate against a plain mapping."""


@dataclass(frozen=True)
class Eq(Predicate):
    field: str
    value: Any

    def to_mongo(self):
        return {self.field: self.value}

    def matches(self, doc):
        return doc.get(self.field) == self.value


@dataclass(frozen=True)
class Contains(Predicate):
    """Case-insensitive literal substring."""

    field: str
    text: str

    def to_mongo(self):
        return {self.field: {"$regex": re.escape(self.text), "$options": "i"}}

    def matches(self, doc):
        value = doc.get(self.field)
        return isinstance(value, str) and self.text.lower() in value.lower()


@dataclass(frozen=True)
class Range(Predicate):
    """Inclusive bounds; a missing bound is open."""

    field: str
    low: Optional[Any] = None
    high: Optional[Any] = None

    def to_mongo(self):
        bounds = {}
        if self.low is not None:
            bounds["$gte"] = self.low
        if self.high is not None:
            bounds["$lte"] = self.high
        return {self.field: bounds}

    def matches(self, doc):
        value = doc.get(self.field)
        if value is None:
            return False
        if self.low is not None and value < self.low:
            return False
        if self.high is not None and value > self.high:
            return False
        return True


@dataclass(frozen=True)
class GreaterThan(Predicate):
    field: str
    value: Any

    def to_mongo(self):
        return {self.field: {"$gt": self.value}}

    def matches(self, doc):
        value = doc.get(self.field)
        return value is not None and value > self.value


@dataclass(frozen=True)
class AnyOf(Predicate):
    children: Tuple[Predicate, ...] = field(default_factory=tuple)

    def to_mongo(self):
        if len(self.children) == 1:
            return self.children[0].to_mongo()
        return {"$or": [child.to_mongo() for child in self.children]}

    def matches(self, doc):
        return any(child.matches(doc) for child in self.children)


@dataclass(frozen=True)
class AllOf(Predicate):
    """Conjunction. Empty means match everything."""

    children: Tuple[Predicate, ...] = field(default_factory=tuple)

    def to_mongo(self):
        if not self.children:
            return {}
        if len(self.children) == 1:
            return self.children[0].to_mongo()
        return {"$and": [child.to_mongo() for child in self.children]}

    def matches(self, doc):
        return all(child.matches(doc) for child in self.children)


def id_predicate(value: str) -> Predicate:
    if ObjectId.is_valid(value):
        return AnyOf((Eq("id", value), Eq("_id", ObjectId(value))))
    return Eq("id", value)


def build_product_match(filters: ProductFilter) -> AllOf:
    nodes = []
    if filters.search:
        nodes.append(AnyOf((Contains("title", filters.search), Contains("description", filters.search))))
    if filters.category_id:
        nodes.append(Eq("categoryId", filters.category_id))
    if filters.seller_id:
        nodes.append(Eq("sellerId", filters.seller_id))
    if filters.brand and filters.brand.lower() not in BRAND_WILDCARDS:
        nodes.append(Eq("brand", filters.brand))
    if filters.status:
        nodes.append(Eq("status", filters.status))
    if filters.id:
        nodes.append(id_predicate(filters.id))
    if filters.slug:
        nodes.append(Eq("slug", filters.slug))
    return AllOf(tuple(nodes))


def build_variant_match(filters: ProductFilter) -> AllOf:
    """Match against the representative variant's camelCase fields."""
    nodes = []
    if filters.min_price is not None or filters.max_price is not None:
        nodes.append(Range("priceCents", filters.min_price, filters.max_price))
    if filters.has_discount:
        nodes.append(GreaterThan("discountPercentage", 0))
    if filters.free_shipping:
        nodes.append(Eq("isFreeShipping", True))
    return AllOf(tuple(nodes))
