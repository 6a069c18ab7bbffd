"""Candidate narrowing for the product list shown while building.

Two paths:
- filter_candidates: fast, in-memory, heuristic rules only
- filter_candidates_exhaustive: authoritative, declarative rules via the catalog

Both treat "cannot determine" as compatible, whatever HEURISTIC_ABSENCE_POLICY
says: a product list never hides items for missing data.
"""

from typing import Any

from .heuristics import Build, explain_conflicts, filter_by_derived, is_compatible
from .models import Component
from .rules import RuleEngine


def filter_candidates(products: list[Component], selected: Build, target_category: str) -> list[Component]:
    """Pre-filter by the derived constraint, then drop anything with a blocking conflict."""
    narrowed = filter_by_derived(products, selected, target_category)
    return [p for p in narrowed if is_compatible(selected, p, "permissive").ok]


async def filter_candidates_exhaustive(
    engine: RuleEngine,
    selection: dict[str, str],
    target_category: str,
) -> list[str]:
    """Ids in target_category compatible with every selected component under the catalog rules."""
    return await engine.get_compatible_components(selection, target_category)


def annotate_candidates(products: list[Component], selected: Build) -> list[dict[str, Any]]:
    """Per-product verdicts for the conflict panel, blocked items included."""
    annotated = []
    for product in products:
        result = is_compatible(selected, product, "permissive")
        annotated.append({
            "id": product.id,
            "ok": result.ok,
            "reasons": [r.to_dict() for r in result.reasons],
            "messages": explain_conflicts(result.reasons),
        })
    return annotated
