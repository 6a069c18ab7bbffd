"""Shared fixtures: a small typed catalog and an in-memory async repository."""

import asyncio

import pytest

from pcbuilder_mcp.models import CatalogError, CompatibilityRule, Component, SpecificationTemplate
from pcbuilder_mcp.specs import attach_template_values

TEMPLATES = [
    SpecificationTemplate(id="cpu-socket", category_id="cpu", name="socket", data_type="socket"),
    SpecificationTemplate(id="mb-socket", category_id="motherboard", name="socket", data_type="socket"),
    SpecificationTemplate(id="mb-memory", category_id="motherboard", name="memory_type", data_type="memory_type"),
    SpecificationTemplate(id="ram-type", category_id="ram", name="type", data_type="memory_type"),
    SpecificationTemplate(id="gpu-power", category_id="gpu", name="power_consumption", data_type="number"),
    SpecificationTemplate(id="gpu-connector", category_id="gpu", name="power_connector", data_type="power_connector"),
    SpecificationTemplate(id="psu-wattage", category_id="psu", name="wattage", data_type="number"),
    SpecificationTemplate(id="psu-connector", category_id="psu", name="pcie_connector", data_type="power_connector"),
]

SOCKET_RULE = CompatibilityRule(
    id="rule-socket",
    name="CPU-Motherboard Socket",
    primary_category_id="cpu",
    secondary_category_id="motherboard",
    primary_specification_template_id="cpu-socket",
    secondary_specification_template_id="mb-socket",
    rule_type="exact_match",
)
MEMORY_RULE = CompatibilityRule(
    id="rule-memory",
    name="Motherboard-RAM Memory Type",
    primary_category_id="motherboard",
    secondary_category_id="ram",
    primary_specification_template_id="mb-memory",
    secondary_specification_template_id="ram-type",
    rule_type="exact_match",
)
WATTAGE_RULE = CompatibilityRule(
    id="rule-wattage",
    name="GPU-PSU Wattage",
    primary_category_id="gpu",
    secondary_category_id="psu",
    primary_specification_template_id="gpu-power",
    secondary_specification_template_id="psu-wattage",
    rule_type="range_check",
    min_value=450,
    max_value=2000,
)


def catalog_component(id: str, category: str, title: str = "", **specs: str) -> Component:
    """A component with template-tagged values, as the catalog backends produce."""
    component = Component(id=id, category=category, specifications=specs, title=title)
    return attach_template_values(component, TEMPLATES)


class FakeRepository:
    """In-memory CatalogRepository with per-method delay and failure injection."""

    def __init__(self, components: list[Component], rules: list[CompatibilityRule]):
        self.components = {c.id: c for c in components}
        self.rules = list(rules)
        self.delays: dict[str, float] = {}  # method name -> seconds
        self.fail = False
        self.calls: list[tuple[str, object]] = []

    async def _pause(self, method: str) -> None:
        delay = self.delays.get(method, 0.0)
        if delay:
            await asyncio.sleep(delay)
        if self.fail:
            raise CatalogError("catalog unavailable")

    async def get_components(self, ids: list[str]) -> dict[str, Component | None]:
        self.calls.append(("get_components", list(ids)))
        await self._pause("get_components")
        return {i: self.components.get(i) for i in ids}

    async def get_rules_between(self, category_ids: list[str]) -> list[CompatibilityRule]:
        self.calls.append(("get_rules_between", sorted(category_ids)))
        await self._pause("get_rules_between")
        wanted = set(category_ids)
        return [
            r for r in self.rules
            if r.primary_category_id in wanted and r.secondary_category_id in wanted
        ]

    async def get_component_ids_by_category(self, category_id: str) -> list[str]:
        self.calls.append(("get_component_ids_by_category", category_id))
        await self._pause("get_component_ids_by_category")
        return [c.id for c in self.components.values() if c.category_id == category_id]


@pytest.fixture
def components() -> list[Component]:
    return [
        catalog_component("cpu-am5", "cpu", "Ryzen 7 7800X3D", socket="AM5"),
        catalog_component("cpu-am4", "cpu", "Ryzen 5 5600X", socket="AM4"),
        catalog_component("cpu-nosocket", "cpu", "Mystery CPU"),
        catalog_component("mb-am5", "motherboard", "B650 Board", socket="AM5", memory_type="DDR5"),
        catalog_component("mb-am4", "motherboard", "B550 Board", socket="AM4", memory_type="DDR4"),
        catalog_component("ram-ddr5", "ram", "DDR5 Kit", type="DDR5"),
        catalog_component("ram-ddr4", "ram", "DDR4 Kit", type="DDR4"),
        catalog_component("gpu-4070", "gpu", "RTX 4070", power_consumption="200W", power_connector="12VHPWR"),
        catalog_component("psu-850", "psu", "850W PSU", wattage="850W", pcie_connector="12VHPWR"),
        catalog_component("psu-400", "psu", "400W PSU", wattage="400W", pcie_connector="6-pin"),
    ]


@pytest.fixture
def repository(components) -> FakeRepository:
    return FakeRepository(components, [SOCKET_RULE, MEMORY_RULE, WATTAGE_RULE])
