"""Specification access and typed value resolution.

All accessors are tolerant of missing data: an absent component, key or value
resolves to None ("cannot determine"), never to a false verdict.
"""

import re

from .models import Component, SpecValue, SpecificationTemplate

# Pre-compiled: these run for every candidate on every selection change.
_NUMBER_PATTERN = re.compile(r"-?\d+(?:[.,]\d+)?")
_LIST_SEPARATOR_PATTERN = re.compile(r"[,;|]")

# Alternative names some catalogs use for the CPU/motherboard socket
SOCKET_ALIASES = ("connector_type", "socket_type", "connector")

_TRUE_VALUES = frozenset({"true", "yes", "y", "1", "on", "supported"})
_FALSE_VALUES = frozenset({"false", "no", "n", "0", "off", "unsupported"})

# Template data types stored as enum values (closed vocabularies)
ENUM_DATA_TYPES = frozenset({
    "enum",
    "socket",
    "memory_type",
    "form_factor",
    "chipset",
    "power_connector",
})


def get_spec(component: Component | None, key: str) -> str | None:
    """Get a raw specification value: get_spec(cpu, 'socket') -> 'AM5'

    Returns None when the component is absent, the key is missing, or the
    value is blank. Lookup is case-insensitive.
    """
    if component is None or not component.specifications:
        return None
    key = key.strip().lower()
    value = component.specifications.get(key)
    if value is None and key == "socket":
        for alias in SOCKET_ALIASES:
            value = component.specifications.get(alias)
            if value is not None:
                break
    if value is None:
        return None
    value = value.strip()
    return value or None


def get_first_spec(component: Component | None, *keys: str) -> str | None:
    """Get the first present value among several fallback keys."""
    for key in keys:
        value = get_spec(component, key)
        if value is not None:
            return value
    return None


def parse_number(raw: str | None) -> float | None:
    """Extract the first number: '300W' -> 300, '-5.5 C' -> -5.5, '2,5 mm' -> 2.5"""
    if not raw:
        return None
    match = _NUMBER_PATTERN.search(str(raw))
    if not match:
        return None
    return float(match.group(0).replace(",", "."))


def parse_bool(raw: str | None) -> bool | None:
    """Parse yes/no style flags: 'Yes' -> True, '0' -> False, 'maybe' -> None"""
    if raw is None:
        return None
    value = str(raw).strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return None


def split_list(raw: str | None) -> list[str]:
    """Split a delimited list value: 'ATX, mATX | ITX' -> ['atx', 'matx', 'itx']"""
    if not raw:
        return []
    return [item.strip().lower() for item in _LIST_SEPARATOR_PATTERN.split(raw) if item.strip()]


def list_includes(raw: str | None, needle: str | None) -> bool | None:
    """Case-insensitive membership in a delimited list.

    Returns None when either side is missing, meaning "can't determine, don't block".
    """
    if not raw or not needle:
        return None
    return needle.strip().lower() in split_list(raw)


def resolve_spec_value(
    name: str,
    raw: str | None,
    template: SpecificationTemplate | None = None,
) -> SpecValue:
    """Resolve a raw string into its typed form using the template's data type.

    Numbers that fail to parse and booleans that aren't recognized are kept as
    text so the value is never lost.
    """
    name = name.strip().lower()
    template_id = template.id if template else None
    if raw is None:
        return SpecValue(name=name, raw=None, template_id=template_id)

    raw = str(raw).strip()
    data_type = template.data_type if template else "text"

    if data_type == "number":
        number = parse_number(raw)
        if number is not None:
            return SpecValue(name=name, raw=raw, template_id=template_id, value_number=number)
    elif data_type == "boolean":
        flag = parse_bool(raw)
        if flag is not None:
            return SpecValue(name=name, raw=raw, template_id=template_id, value_boolean=flag)
    elif data_type in ENUM_DATA_TYPES:
        return SpecValue(name=name, raw=raw, template_id=template_id, value_enum=raw)

    return SpecValue(name=name, raw=raw, template_id=template_id, value_text=raw)


def attach_template_values(
    component: Component,
    templates: list[SpecificationTemplate],
) -> Component:
    """Populate component.values for every template of its category that has a value."""
    for template in templates:
        if template.category_id != component.category_id:
            continue
        raw = component.specifications.get(template.name.lower())
        if raw is None:
            continue
        component.values[template.id] = resolve_spec_value(template.name, raw, template)
    return component
