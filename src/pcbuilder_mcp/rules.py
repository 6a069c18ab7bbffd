"""Data-driven compatibility rules between specification templates.

Rules are authored by administrators and stored with the catalog. Each rule
links a primary category's specification template to a secondary category's
template and applies one of four checks:
- exact_match: typed values must be equal
- compatible_values: secondary value must be in an allow-list
- range_check: secondary value must be numeric and within [min, max]
- custom: reserved extension point, governed by CUSTOM_RULE_POLICY

Evaluation is pure over in-memory components; RuleEngine adds batched,
bounded-concurrency fetching from a CatalogRepository.
"""

import asyncio
import logging
from typing import Any, Awaitable, TypeVar

from .config import (
    CUSTOM_RULE_POLICY,
    DECLARATIVE_ABSENCE_POLICY,
    FETCH_CONCURRENT_LIMIT,
    FETCH_TIMEOUT,
    MAX_BATCH_SIZE,
    TIMEOUT_POLICY,
)
from .models import (
    AbsencePolicy,
    CatalogError,
    CatalogRepository,
    CatalogTimeout,
    CompatibilityRule,
    Component,
    ConfigurationResult,
    IncompatiblePair,
    PairResult,
    SpecValue,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

COMPATIBLE = PairResult(is_compatible=True)


def _fmt(value: Any) -> str:
    """Display a typed value: 1200.0 -> '1200', True -> 'true'"""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _numeric(spec: SpecValue) -> float | None:
    """Numeric reading of a spec value, or None if it isn't a number.

    Number-typed values were already parsed at load. Other kinds count only
    when the whole value is a number: '450' -> 450, '8-pin' -> None.
    """
    if spec.value_number is not None:
        return spec.value_number
    if spec.value_boolean is not None or spec.typed is None:
        return None
    try:
        return float(str(spec.typed).strip())
    except ValueError:
        return None


def _values_equal(primary: SpecValue, secondary: SpecValue) -> bool:
    """Compare typed values. Numbers compare numerically, strings case-insensitively."""
    if primary.kind == "number" or secondary.kind == "number":
        a, b = _numeric(primary), _numeric(secondary)
        return a is not None and b is not None and a == b
    p, s = primary.typed, secondary.typed
    if isinstance(p, str) and isinstance(s, str):
        return p.strip().lower() == s.strip().lower()
    return p == s


def _assign_roles(
    rule: CompatibilityRule,
    component_a: Component,
    component_b: Component,
) -> tuple[Component, Component]:
    """Return (primary, secondary) components for a rule by category identity."""
    if rule.primary_category_id == component_a.category_id:
        return component_a, component_b
    return component_b, component_a


def evaluate_rule(
    rule: CompatibilityRule,
    component_a: Component,
    component_b: Component,
    *,
    absence_policy: AbsencePolicy = "strict",
    custom_rule_policy: str = "pass",
) -> PairResult:
    """Evaluate one rule against a pair of components (in either order)."""
    primary, secondary = _assign_roles(rule, component_a, component_b)
    primary_spec = primary.value_for_template(rule.primary_specification_template_id)
    secondary_spec = secondary.value_for_template(rule.secondary_specification_template_id)

    if rule.rule_type == "custom":
        if custom_rule_policy == "block":
            return PairResult(False, f"Custom rule '{rule.name or rule.id}' is not supported")
        logger.warning(f"Custom compatibility rule check not implemented: {rule.name or rule.id}")
        return COMPATIBLE

    if primary_spec is None or secondary_spec is None or primary_spec.raw is None or secondary_spec.raw is None:
        if absence_policy == "permissive":
            return COMPATIBLE
        return PairResult(
            False,
            f"Missing required specification for compatibility check between "
            f"{primary.title} and {secondary.title}",
        )

    if rule.rule_type == "exact_match":
        if not _values_equal(primary_spec, secondary_spec):
            return PairResult(
                False,
                f"{primary.title} and {secondary.title} have incompatible {primary_spec.name} values: "
                f"{_fmt(primary_spec.typed)} vs {_fmt(secondary_spec.typed)}",
            )

    elif rule.rule_type == "compatible_values":
        allowed = {v.strip().lower() for v in (rule.compatible_values or ())}
        if _fmt(secondary_spec.typed).strip().lower() not in allowed:
            return PairResult(
                False,
                f"{secondary.title}'s {secondary_spec.name} ({_fmt(secondary_spec.typed)}) is not compatible "
                f"with {primary.title}'s {primary_spec.name} ({_fmt(primary_spec.typed)})",
            )

    elif rule.rule_type == "range_check":
        value = _numeric(secondary_spec)
        if (
            value is None
            or (rule.min_value is not None and value < rule.min_value)
            or (rule.max_value is not None and value > rule.max_value)
        ):
            shown = _fmt(value) if value is not None else secondary_spec.raw
            return PairResult(
                False,
                f"{secondary.title}'s {secondary_spec.name} ({shown}) is outside the compatible range "
                f"for {primary.title}",
            )

    return COMPATIBLE


def check_pair(
    component_a: Component,
    component_b: Component,
    rules: list[CompatibilityRule],
    *,
    absence_policy: AbsencePolicy = "strict",
    custom_rule_policy: str = "pass",
) -> PairResult:
    """Evaluate the rules that apply to this category pair, stopping at the first failure.

    No applicable rules means compatible.
    """
    for rule in rules:
        if not rule.matches(component_a.category_id, component_b.category_id):
            continue
        result = evaluate_rule(
            rule,
            component_a,
            component_b,
            absence_policy=absence_policy,
            custom_rule_policy=custom_rule_policy,
        )
        if not result.is_compatible:
            return result
    return COMPATIBLE


def index_rules(rules: list[CompatibilityRule]) -> dict[frozenset[str], list[CompatibilityRule]]:
    """Group rules by unordered category pair, preserving rule order."""
    index: dict[frozenset[str], list[CompatibilityRule]] = {}
    for rule in rules:
        key = frozenset((rule.primary_category_id, rule.secondary_category_id))
        index.setdefault(key, []).append(rule)
    return index


def _chunks(items: list[str], size: int) -> list[list[str]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


def _unique(items: list[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


class RuleEngine:
    """Declarative compatibility checks backed by a catalog repository.

    Every repository call is bounded by fetch_timeout. Component fetches are
    batched (batch_size ids per call) and run concurrently under a semaphore.
    """

    def __init__(
        self,
        repository: CatalogRepository,
        *,
        absence_policy: AbsencePolicy = DECLARATIVE_ABSENCE_POLICY,  # type: ignore[assignment]
        custom_rule_policy: str = CUSTOM_RULE_POLICY,
        timeout_policy: str = TIMEOUT_POLICY,
        fetch_timeout: float = FETCH_TIMEOUT,
        concurrent_limit: int = FETCH_CONCURRENT_LIMIT,
        batch_size: int = MAX_BATCH_SIZE,
    ):
        self._repository = repository
        self.absence_policy = absence_policy
        self.custom_rule_policy = custom_rule_policy
        self.timeout_policy = timeout_policy
        self._fetch_timeout = fetch_timeout
        self._concurrent_limit = concurrent_limit
        self._batch_size = batch_size

    async def _fetch(self, awaitable: Awaitable[T], what: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._fetch_timeout)
        except asyncio.TimeoutError as e:
            raise CatalogTimeout(f"Timed out fetching {what} after {self._fetch_timeout}s") from e

    async def _fetch_components(self, ids: list[str]) -> dict[str, Component | None]:
        """Fetch components in batches, concurrently, limited by semaphore."""
        ids = _unique(ids)
        if not ids:
            return {}
        semaphore = asyncio.Semaphore(self._concurrent_limit)

        async def fetch_batch(batch: list[str]) -> dict[str, Component | None]:
            async with semaphore:
                return await self._fetch(self._repository.get_components(batch), f"{len(batch)} components")

        results = await asyncio.gather(*[fetch_batch(b) for b in _chunks(ids, self._batch_size)])
        merged: dict[str, Component | None] = {}
        for batch_result in results:
            merged.update(batch_result)
        return merged

    async def _fetch_rules(self, components: list[Component]) -> list[CompatibilityRule]:
        category_ids = _unique([c.category_id for c in components if c.category_id])
        return await self._fetch(self._repository.get_rules_between(category_ids), "compatibility rules")

    def _evaluate(self, a: Component, b: Component, index: dict[frozenset[str], list[CompatibilityRule]]) -> PairResult:
        rules = index.get(frozenset((a.category_id, b.category_id)), [])
        return check_pair(
            a, b, rules,
            absence_policy=self.absence_policy,
            custom_rule_policy=self.custom_rule_policy,
        )

    @staticmethod
    def _require(components: dict[str, Component | None], ids: list[str]) -> list[Component]:
        found = []
        for component_id in ids:
            component = components.get(component_id)
            if component is None:
                raise CatalogError(f"Component {component_id} not found")
            found.append(component)
        return found

    async def check_component_compatibility(self, component1_id: str, component2_id: str) -> PairResult:
        """Check two components against every rule between their categories.

        Never raises: fetch failures become an incompatible result.
        """
        try:
            components = await self._fetch_components([component1_id, component2_id])
            a, b = self._require(components, [component1_id, component2_id])
            if a.id == b.id:
                return COMPATIBLE
            rules = await self._fetch_rules([a, b])
            return self._evaluate(a, b, index_rules(rules))
        except CatalogTimeout as e:
            if self.timeout_policy == "retry":
                logger.warning(f"Compatibility check timed out: {e}")
                return PairResult(False, "Compatibility data unavailable, retry", retryable=True)
            logger.warning(f"Compatibility check timed out, assuming compatible: {e}")
            return COMPATIBLE
        except Exception as e:
            logger.error(f"Error checking component compatibility: {type(e).__name__}: {e}")
            return PairResult(False, "Error checking compatibility")

    async def get_compatible_components(self, selection: dict[str, str], target_category: str) -> list[str]:
        """Ids in target_category compatible with every selected component.

        selection maps slot/category -> selected component id. With nothing
        selected, every candidate qualifies. Never raises: errors return [].
        """
        candidate_ids: list[str] = []
        try:
            candidate_ids = await self._fetch(
                self._repository.get_component_ids_by_category(target_category),
                f"components in {target_category}",
            )
            if not selection or not candidate_ids:
                return list(candidate_ids)

            selected_ids = _unique(list(selection.values()))
            components = await self._fetch_components(candidate_ids + selected_ids)
            selected = self._require(components, selected_ids)
            candidates = [components[cid] for cid in candidate_ids if components.get(cid) is not None]
            index = index_rules(await self._fetch_rules(selected + candidates))

            compatible_ids = []
            for candidate in candidates:
                if all(
                    s.id == candidate.id or self._evaluate(candidate, s, index).is_compatible
                    for s in selected
                ):
                    compatible_ids.append(candidate.id)
            return compatible_ids
        except CatalogTimeout as e:
            if self.timeout_policy == "retry":
                logger.warning(f"Compatible component lookup timed out: {e}")
                return []
            logger.warning(f"Compatible component lookup timed out, returning unfiltered candidates: {e}")
            return list(candidate_ids)
        except Exception as e:
            logger.error(f"Error getting compatible components: {type(e).__name__}: {e}")
            return []

    async def validate_configuration(self, build: dict[str, str] | list[str]) -> ConfigurationResult:
        """Check every unordered pair in a build and aggregate all failures.

        build is slot -> component id, or a plain list of ids for builds with
        several parts per category. Raises CatalogError on fetch failure.
        """
        ids = list(build.values()) if isinstance(build, dict) else list(build)
        if len(ids) < 2:
            return ConfigurationResult(is_compatible=True)

        try:
            components = await self._fetch_components(ids)
            resolved = self._require(components, _unique(ids))
            index = index_rules(await self._fetch_rules(resolved))
        except CatalogTimeout as e:
            if self.timeout_policy == "retry":
                raise
            logger.warning(f"Configuration validation timed out, assuming compatible: {e}")
            return ConfigurationResult(is_compatible=True)

        by_id = {c.id: c for c in resolved}
        incompatible: list[IncompatiblePair] = []
        for i in range(len(ids)):
            for j in range(i + 1, len(ids)):
                if ids[i] == ids[j]:
                    continue
                result = self._evaluate(by_id[ids[i]], by_id[ids[j]], index)
                if not result.is_compatible:
                    incompatible.append(IncompatiblePair(ids[i], ids[j], result.reason or "Incompatible components"))

        return ConfigurationResult.from_pairs(incompatible)
