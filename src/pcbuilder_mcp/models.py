"""Data model for components, specification templates, rules and results."""

from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

Severity = Literal["error", "warn"]
RuleType = Literal["exact_match", "compatible_values", "range_check", "custom"]
AbsencePolicy = Literal["permissive", "strict"]

RULE_TYPES = frozenset({"exact_match", "compatible_values", "range_check", "custom"})
_SEVERITIES = frozenset({"error", "warn"})


class CatalogError(Exception):
    """Catalog storage could not be read."""


class CatalogTimeout(CatalogError):
    """A catalog fetch exceeded its timeout."""


class RuleValidationError(ValueError):
    """A compatibility rule record is malformed."""


@dataclass(frozen=True)
class SpecValue:
    """A specification value resolved once into its typed form.

    Exactly one of the value_* fields is normally populated; `typed` falls back
    through number, boolean, enum, text and finally the raw string.
    """

    name: str
    raw: str | None
    template_id: str | None = None
    value_number: float | None = None
    value_boolean: bool | None = None
    value_enum: str | None = None
    value_text: str | None = None

    @property
    def kind(self) -> str:
        if self.value_number is not None:
            return "number"
        if self.value_boolean is not None:
            return "boolean"
        if self.value_enum is not None:
            return "enum"
        if self.value_text is not None:
            return "text"
        return "raw"

    @property
    def typed(self) -> float | bool | str | None:
        if self.value_number is not None:
            return self.value_number
        if self.value_boolean is not None:
            return self.value_boolean
        if self.value_enum is not None:
            return self.value_enum
        if self.value_text is not None:
            return self.value_text
        return self.raw


@dataclass
class Component:
    """A purchasable part with a flat name -> value specification mapping.

    Specification names are lower-cased. A missing key means "unknown".
    `values` holds template-tagged typed values keyed by template id and is
    only populated for catalogs that carry specification templates.
    """

    id: str
    category: str
    specifications: dict[str, str] = field(default_factory=dict)
    title: str = ""
    category_id: str | None = None
    values: dict[str, SpecValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.specifications = {
            str(name).strip().lower(): str(value)
            for name, value in self.specifications.items()
            if value is not None
        }
        if self.category_id is None:
            self.category_id = self.category
        if not self.title:
            self.title = self.id

    def value_for_template(self, template_id: str) -> SpecValue | None:
        return self.values.get(template_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "category": self.category,
            "category_id": self.category_id,
            "specifications": dict(self.specifications),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Component":
        """Build a component from the UI/tool payload shape.

        Accepts `category` or `categorySlug`, and `specifications` either as a
        mapping or as a list of {name, value} records.
        """
        specs = data.get("specifications") or {}
        if isinstance(specs, list):
            specs = {s["name"]: s.get("value") for s in specs if s.get("name")}
        category = data.get("category") or data.get("categorySlug") or data.get("category_slug")
        if not data.get("id") or not category:
            raise ValueError("Component requires 'id' and 'category'")
        return cls(
            id=str(data["id"]),
            category=str(category),
            specifications=specs,
            title=data.get("title", ""),
            category_id=data.get("category_id"),
        )


@dataclass(frozen=True)
class SpecificationTemplate:
    """Named, typed specification defined for a category."""

    id: str
    category_id: str
    name: str
    data_type: str = "text"
    enum_values: tuple[str, ...] | None = None
    min_value: float | None = None
    max_value: float | None = None
    is_compatibility_key: bool = False
    is_required: bool = False
    display_name: str | None = None

    @property
    def label(self) -> str:
        return self.display_name or self.name


@dataclass(frozen=True)
class CompatibilityRule:
    """Data-driven constraint between two categories' specification templates.

    The category pair is unordered for lookup; primary/secondary roles are
    assigned by category at evaluation time.
    """

    id: str
    primary_category_id: str
    secondary_category_id: str
    primary_specification_template_id: str
    secondary_specification_template_id: str
    rule_type: str
    name: str = ""
    description: str = ""
    compatible_values: tuple[str, ...] | None = None
    min_value: float | None = None
    max_value: float | None = None

    def __post_init__(self) -> None:
        if self.rule_type not in RULE_TYPES:
            raise RuleValidationError(
                f"Invalid rule type '{self.rule_type}'. "
                f"Must be one of: {', '.join(sorted(RULE_TYPES))}"
            )

    def matches(self, category_a: str | None, category_b: str | None) -> bool:
        return {self.primary_category_id, self.secondary_category_id} == {category_a, category_b}


@dataclass(frozen=True)
class Reason:
    """A typed compatibility reason."""

    code: str
    message: str
    severity: Severity

    def __post_init__(self) -> None:
        if self.severity not in _SEVERITIES:
            raise ValueError(f"Invalid severity '{self.severity}'. Must be 'error' or 'warn'")

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message, "severity": self.severity}


@dataclass(frozen=True)
class HeuristicResult:
    """Outcome of checking one candidate against the current build."""

    ok: bool
    reasons: tuple[Reason, ...] = ()

    @classmethod
    def from_reasons(cls, reasons: list[Reason]) -> "HeuristicResult":
        return cls(ok=all(r.severity != "error" for r in reasons), reasons=tuple(reasons))

    def to_dict(self) -> dict[str, Any]:
        return {"ok": self.ok, "reasons": [r.to_dict() for r in self.reasons]}


@dataclass(frozen=True)
class PairResult:
    """Outcome of a declarative check between two components."""

    is_compatible: bool
    reason: str | None = None
    retryable: bool = False

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"is_compatible": self.is_compatible}
        if self.reason:
            result["reason"] = self.reason
        if self.retryable:
            result["retryable"] = True
        return result


@dataclass(frozen=True)
class IncompatiblePair:
    component1_id: str
    component2_id: str
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {
            "component1_id": self.component1_id,
            "component2_id": self.component2_id,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class ConfigurationResult:
    """Whole-build validation outcome. `incompatible_components` is None when empty."""

    is_compatible: bool
    incompatible_components: tuple[IncompatiblePair, ...] | None = None

    @classmethod
    def from_pairs(cls, pairs: list[IncompatiblePair]) -> "ConfigurationResult":
        return cls(is_compatible=not pairs, incompatible_components=tuple(pairs) if pairs else None)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"is_compatible": self.is_compatible}
        if self.incompatible_components:
            result["incompatible_components"] = [p.to_dict() for p in self.incompatible_components]
        return result


class CatalogRepository(Protocol):
    """Read-only catalog access needed by the declarative engine."""

    async def get_components(self, ids: list[str]) -> dict[str, Component | None]: ...

    async def get_rules_between(self, category_ids: list[str]) -> list[CompatibilityRule]: ...

    async def get_component_ids_by_category(self, category_id: str) -> list[str]: ...
