"""
Access-control filter and user context types.

The RBAC filter is built outside this package and passed through to both
search backends untouched. It is structurally typed here so that malformed
filters fail at construction instead of deep inside a search call.
"""

from typing import Any, List, Literal, Optional, Union

from pydantic import Field, model_validator

from src.shared.errors import FilterValidationError
from src.shared.models import FrozenModel

MatchValue = Union[str, int, float, bool]


class FieldCondition(FrozenModel):
    """Match a payload key against one value or any of several values."""

    key: str
    value: Optional[MatchValue] = None
    any: Optional[List[MatchValue]] = None

    @model_validator(mode="after")
    def _one_matcher(self) -> "FieldCondition":
        if not self.key:
            raise FilterValidationError("filter condition key must not be empty")
        if (self.value is None) == (self.any is None):
            raise FilterValidationError(
                f"filter condition on {self.key!r} needs exactly one of value/any"
            )
        return self


class Must(FrozenModel):
    kind: Literal["must"] = "must"
    conditions: List[FieldCondition] = Field(default_factory=list)


class Should(FrozenModel):
    kind: Literal["should"] = "should"
    conditions: List[FieldCondition] = Field(default_factory=list)


class SearchFilter(FrozenModel):
    """Opaque-to-the-core filter made of tagged Must/Should clauses."""

    must: List[Must] = Field(default_factory=list)
    should: List[Should] = Field(default_factory=list)

    @classmethod
    def from_mapping(cls, raw: dict) -> "SearchFilter":
        """Build from the ``{"must": [...], "should": [...]}`` wire shape."""
        unknown = set(raw) - {"must", "should"}
        if unknown:
            raise FilterValidationError(
                f"unknown filter clauses: {sorted(unknown)}"
            )
        return cls(
            must=[Must(conditions=[FieldCondition(**c) for c in raw.get("must", [])])]
            if raw.get("must")
            else [],
            should=[
                Should(conditions=[FieldCondition(**c) for c in raw.get("should", [])])
            ]
            if raw.get("should")
            else [],
        )

    def is_empty(self) -> bool:
        return not any(c.conditions for c in self.must) and not any(
            c.conditions for c in self.should
        )

    def to_dict(self) -> dict:
        def _cond(c: FieldCondition) -> dict[str, Any]:
            return {"key": c.key, "any": c.any} if c.any is not None else {
                "key": c.key,
                "value": c.value,
            }

        return {
            "must": [_cond(c) for clause in self.must for c in clause.conditions],
            "should": [_cond(c) for clause in self.should for c in clause.conditions],
        }


class UserContext(FrozenModel):
    id: str
    tenant_id: Optional[str] = None
    group_ids: List[str] = Field(default_factory=list)
    language: Optional[str] = None

    def is_admin(self) -> bool:
        if any(g in ("admin", "system") for g in self.group_ids):
            return True
        return "admin" in self.id
