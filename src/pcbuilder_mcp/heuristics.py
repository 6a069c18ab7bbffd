"""Zero-configuration compatibility rules between PC component categories.

This module provides the fast path used while a user is assembling a build:
1. A fixed table of pairwise rules (socket, chipset, memory, form factor, power, clearance, cooling)
2. Per-candidate checks against the currently selected components
3. A cheap single-constraint pre-filter for product lists
4. A whole-build report with a power estimate

Missing specification data never produces an error under the default
permissive policy - partial catalogs are the norm.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable

from .config import (
    CHIPSET_SOCKET_COMPATIBILITY,
    COMPONENT_POWER_CONSUMPTION,
    COOLER_SAFETY_MARGIN_AIR,
    COOLER_SAFETY_MARGIN_LIQUID,
    GPU_LENGTH_TIGHT_RATIO,
    PSU_HEADROOM_MULTIPLIER,
    PSU_HEADROOM_PERCENT,
    SOCKET_MEMORY_COMPATIBILITY,
    SOCKET_MEMORY_SPEEDS,
)
from .models import AbsencePolicy, Component, HeuristicResult, Reason
from .specs import get_first_spec, get_spec, list_includes, parse_number

Build = dict[str, Component | None]

# Fallback keys, first found wins
MOBO_MEMORY_KEYS = ("memory_type", "ram_type")
CASE_SUPPORT_KEYS = ("motherboard_support", "supported_mobo_form_factors", "supported_form_factors")
GPU_DRAW_KEYS = ("power_consumption", "power_draw", "power_draw_w")
RAM_TYPE_KEYS = ("type", "memory_type")
RAM_SPEED_KEYS = ("speed", "frequency")
CPU_TDP_KEYS = ("tdp", "power_consumption")
COOLER_CAPACITY_KEYS = ("tdp_rating", "cooling_capacity")

# "DDR5-6000" or "3200 MHz": the 4-5 digit run is the speed
_MEMORY_SPEED_PATTERN = re.compile(r"\d{4,5}")

# Longest first so "B650E" is not read as "B650"
_KNOWN_CHIPSETS = sorted(CHIPSET_SOCKET_COMPATIBILITY, key=len, reverse=True)


def required_psu_wattage(gpu_draw: float) -> int:
    """Minimum PSU wattage for a GPU draw: 300 -> 450"""
    return math.ceil(gpu_draw * PSU_HEADROOM_MULTIPLIER)


def _same(a: str, b: str) -> bool:
    return a.strip().lower() == b.strip().lower()


def _missing(code: str, message: str, strict: bool) -> list[Reason]:
    """Reason for a rule that could not be evaluated (strict policy only)."""
    if not strict:
        return []
    return [Reason("missing_spec", f"{message} (needed for {code})", "error")]


# =============================================================================
# RULE CHECKS
# =============================================================================
# Each check receives the two components in the rule's declared category order
# and returns zero or more reasons.


def _check_socket(cpu: Component, mobo: Component, strict: bool) -> list[Reason]:
    cpu_socket = get_spec(cpu, "socket")
    mobo_socket = get_spec(mobo, "socket")
    if cpu_socket is None or mobo_socket is None:
        return _missing("socket_mismatch", "CPU or motherboard socket unknown", strict)
    if not _same(cpu_socket, mobo_socket):
        return [Reason(
            "socket_mismatch",
            f"CPU socket {cpu_socket} does not match motherboard socket {mobo_socket}",
            "error",
        )]
    return []


def _check_ram_type(mobo: Component, ram: Component, strict: bool) -> list[Reason]:
    ram_type = get_spec(ram, "type")
    mobo_type = get_first_spec(mobo, *MOBO_MEMORY_KEYS)
    if ram_type is None or mobo_type is None:
        return _missing("ram_type", "RAM or motherboard memory type unknown", strict)
    if not _same(ram_type, mobo_type):
        return [Reason("ram_type", f"RAM {ram_type} not supported by motherboard ({mobo_type})", "error")]
    return []


def _check_case_form_factor(case: Component, mobo: Component, strict: bool) -> list[Reason]:
    form_factor = get_spec(mobo, "form_factor")
    support = get_first_spec(case, *CASE_SUPPORT_KEYS)
    supported = list_includes(support, form_factor)
    if supported is None:
        return _missing("case_form_factor", "Case support list or motherboard form factor unknown", strict)
    if supported is False:
        return [Reason(
            "case_form_factor",
            f"Case does not support motherboard form factor {form_factor}",
            "error",
        )]
    return []


def _check_psu_wattage(psu: Component, gpu: Component, strict: bool) -> list[Reason]:
    draw = parse_number(get_first_spec(gpu, *GPU_DRAW_KEYS))
    wattage = parse_number(get_spec(psu, "wattage"))
    if not draw or not wattage:
        return _missing("psu_wattage", "PSU wattage or GPU power draw unknown", strict)
    required = required_psu_wattage(draw)
    if wattage < required:
        return [Reason(
            "psu_wattage",
            f"PSU wattage {wattage:g}W may be low for GPU draw {draw:g}W (recommended {required}W)",
            "warn",
        )]
    return []


def _check_gpu_length(case: Component, gpu: Component, strict: bool) -> list[Reason]:
    length = parse_number(get_spec(gpu, "length"))
    max_length = parse_number(get_spec(case, "max_gpu_length"))
    if not length or not max_length:
        return _missing("gpu_length", "GPU length or case GPU clearance unknown", strict)
    if length > max_length:
        return [Reason(
            "gpu_length",
            f"GPU length {length:g}mm exceeds case maximum {max_length:g}mm",
            "error",
        )]
    if length > max_length * GPU_LENGTH_TIGHT_RATIO:
        return [Reason(
            "gpu_length_tight",
            f"GPU length {length:g}mm is close to case maximum {max_length:g}mm, verify cable clearance",
            "warn",
        )]
    return []


def _check_socket_memory(cpu: Component, ram: Component, strict: bool) -> list[Reason]:
    socket = get_spec(cpu, "socket")
    ram_type = get_first_spec(ram, *RAM_TYPE_KEYS)
    if socket is None or ram_type is None:
        return _missing("socket_memory", "CPU socket or RAM type unknown", strict)
    supported = SOCKET_MEMORY_COMPATIBILITY.get(socket.strip().upper())
    if supported is None:
        return []  # Socket not in the table, nothing to say
    if ram_type.strip().upper() not in supported:
        return [Reason(
            "socket_memory",
            f"{socket} platforms support {'/'.join(supported)}, not {ram_type}",
            "warn",
        )]
    return []


def _chipset_of(raw: str) -> str | None:
    """Known chipset named in a value: 'AMD B650E' -> 'B650E'"""
    upper = raw.upper()
    for chipset in _KNOWN_CHIPSETS:
        if chipset in upper:
            return chipset
    return None


def _check_chipset_socket(cpu: Component, mobo: Component, strict: bool) -> list[Reason]:
    socket = get_spec(cpu, "socket")
    raw_chipset = get_spec(mobo, "chipset")
    if socket is None or raw_chipset is None:
        return _missing("chipset_socket", "CPU socket or motherboard chipset unknown", strict)
    chipset = _chipset_of(raw_chipset)
    if chipset is None:
        return []
    supported = CHIPSET_SOCKET_COMPATIBILITY[chipset]
    if socket.strip().upper() not in supported:
        return [Reason(
            "chipset_socket",
            f"{chipset} chipset supports {'/'.join(supported)} CPUs, not {socket}",
            "error",
        )]
    return []


def _memory_speed(raw: str | None) -> int | None:
    if not raw:
        return None
    match = _MEMORY_SPEED_PATTERN.search(raw)
    return int(match.group(0)) if match else None


def _check_memory_speed(cpu: Component, ram: Component, strict: bool) -> list[Reason]:
    socket = get_spec(cpu, "socket")
    speed = _memory_speed(get_first_spec(ram, *RAM_SPEED_KEYS))
    if socket is None or speed is None:
        return _missing("memory_speed", "CPU socket or RAM speed unknown", strict)
    speeds = SOCKET_MEMORY_SPEEDS.get(socket.strip().upper())
    if not speeds:
        return []
    if speed > max(speeds):
        return [Reason(
            "memory_speed",
            f"RAM speed {speed} MT/s exceeds the {socket} maximum of {max(speeds)} MT/s, "
            "memory will run at a reduced speed",
            "warn",
        )]
    return []


def _check_cooler_tdp(cooler: Component, cpu: Component, strict: bool) -> list[Reason]:
    tdp = parse_number(get_first_spec(cpu, *CPU_TDP_KEYS))
    capacity = parse_number(get_first_spec(cooler, *COOLER_CAPACITY_KEYS))
    if not tdp or not capacity:
        return _missing("cooler_tdp", "CPU TDP or cooler capacity unknown", strict)
    if tdp > capacity:
        return [Reason(
            "cooler_tdp",
            f"CPU TDP {tdp:g}W exceeds cooler capacity {capacity:g}W",
            "error",
        )]
    kind = f"{cooler.title} {get_spec(cooler, 'type') or ''}".lower()
    liquid = "liquid" in kind or "aio" in kind
    margin = COOLER_SAFETY_MARGIN_LIQUID if liquid else COOLER_SAFETY_MARGIN_AIR
    if tdp > capacity * margin:
        recommended = math.ceil(tdp / margin / 10) * 10
        return [Reason(
            "cooler_tdp_tight",
            f"CPU TDP {tdp:g}W is close to cooler capacity {capacity:g}W (recommended {recommended}W+)",
            "warn",
        )]
    return []


# =============================================================================
# RULE TABLE
# =============================================================================
# - categories: the unordered slot pair, in the argument order of `check`
# - check: returns reasons for the pair

HEURISTIC_RULES: dict[str, dict[str, Any]] = {
    "socket_mismatch": {
        "categories": ("cpu", "motherboard"),
        "check": _check_socket,
    },
    "ram_type": {
        "categories": ("motherboard", "ram"),
        "check": _check_ram_type,
    },
    "case_form_factor": {
        "categories": ("case", "motherboard"),
        "check": _check_case_form_factor,
    },
    "psu_wattage": {
        "categories": ("psu", "gpu"),
        "check": _check_psu_wattage,
    },
    "gpu_length": {
        "categories": ("case", "gpu"),
        "check": _check_gpu_length,
    },
    "socket_memory": {
        "categories": ("cpu", "ram"),
        "check": _check_socket_memory,
    },
    "chipset_socket": {
        "categories": ("cpu", "motherboard"),
        "check": _check_chipset_socket,
    },
    "memory_speed": {
        "categories": ("cpu", "ram"),
        "check": _check_memory_speed,
    },
    "cooler_tdp": {
        "categories": ("cooling", "cpu"),
        "check": _check_cooler_tdp,
    },
}


def _run_rule(rule: dict[str, Any], first: Component, second: Component, strict: bool) -> list[Reason]:
    check: Callable[[Component, Component, bool], list[Reason]] = rule["check"]
    return check(first, second, strict)


# =============================================================================
# PUBLIC OPERATIONS
# =============================================================================


def is_compatible(
    selected: Build,
    candidate: Component,
    absence_policy: AbsencePolicy = "permissive",
) -> HeuristicResult:
    """Check a candidate against every occupied slot it has a rule with.

    ok is False only when an error-severity reason was produced.
    """
    strict = absence_policy == "strict"
    reasons: list[Reason] = []

    for rule in HEURISTIC_RULES.values():
        first_cat, second_cat = rule["categories"]
        if candidate.category == first_cat:
            other = selected.get(second_cat)
            if other is not None:
                reasons.extend(_run_rule(rule, candidate, other, strict))
        elif candidate.category == second_cat:
            other = selected.get(first_cat)
            if other is not None:
                reasons.extend(_run_rule(rule, other, candidate, strict))

    return HeuristicResult.from_reasons(reasons)


def filter_by_derived(
    products: list[Component],
    selected: Build,
    target_category: str,
) -> list[Component]:
    """Narrow a product list using the single most relevant upstream constraint.

    Products whose own data is missing are kept (can't determine, don't block).
    """
    cpu = selected.get("cpu")
    mobo = selected.get("motherboard")
    gpu = selected.get("gpu")

    if target_category == "motherboard":
        cpu_socket = get_spec(cpu, "socket")
        if cpu_socket:
            return [p for p in products if _matches_or_unknown(get_spec(p, "socket"), cpu_socket)]

    elif target_category == "ram":
        mobo_type = get_first_spec(mobo, *MOBO_MEMORY_KEYS)
        if mobo_type:
            return [p for p in products if _matches_or_unknown(get_spec(p, "type"), mobo_type)]

    elif target_category == "case":
        form_factor = get_spec(mobo, "form_factor")
        if form_factor:
            return [
                p for p in products
                if list_includes(get_first_spec(p, *CASE_SUPPORT_KEYS), form_factor) is not False
            ]

    elif target_category == "psu":
        draw = parse_number(get_first_spec(gpu, *GPU_DRAW_KEYS))
        if draw:
            required = required_psu_wattage(draw)
            return [p for p in products if _wattage_ok_or_unknown(p, required)]

    return list(products)


def _matches_or_unknown(value: str | None, expected: str) -> bool:
    return value is None or _same(value, expected)


def _wattage_ok_or_unknown(psu: Component, required: int) -> bool:
    wattage = parse_number(get_spec(psu, "wattage"))
    return wattage is None or wattage >= required


def explain_conflicts(reasons: list[Reason] | tuple[Reason, ...]) -> list[str]:
    """Project reasons to their display messages."""
    return [r.message for r in reasons]


# =============================================================================
# WHOLE-BUILD REPORT
# =============================================================================


@dataclass
class BuildReport:
    """Heuristic validation of every occupied slot pair in a build."""

    is_valid: bool
    issues: list[Reason] = field(default_factory=list)
    warnings: list[Reason] = field(default_factory=list)
    estimated_power: int = 0
    recommended_psu_wattage: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "issues": [r.to_dict() for r in self.issues],
            "warnings": [r.to_dict() for r in self.warnings],
            "estimated_power": self.estimated_power,
            "recommended_psu_wattage": self.recommended_psu_wattage,
        }


def estimate_power_consumption(selected: Build) -> int:
    """Estimate whole-system draw in watts from the selected components.

    Uses specification values where present (CPU tdp, GPU draw) and typical
    figures for memory, storage, cooling and case fans otherwise.
    """
    if not any(selected.values()):
        return 0

    total = float(COMPONENT_POWER_CONSUMPTION["motherboard"])

    cpu_tdp = parse_number(get_spec(selected.get("cpu"), "tdp"))
    if cpu_tdp:
        total += cpu_tdp

    gpu_draw = parse_number(get_first_spec(selected.get("gpu"), *GPU_DRAW_KEYS))
    if gpu_draw:
        total += gpu_draw

    ram = selected.get("ram")
    if ram is not None:
        ram_type = (get_first_spec(ram, *RAM_TYPE_KEYS) or "").lower()
        per_module = COMPONENT_POWER_CONSUMPTION["memory_ddr5" if "ddr5" in ram_type else "memory_ddr4"]
        modules = parse_number(get_spec(ram, "modules")) or 1
        total += per_module * int(modules)

    storage = selected.get("storage")
    if storage is not None:
        interface = (get_spec(storage, "interface") or "").lower()
        if "nvme" in interface:
            total += COMPONENT_POWER_CONSUMPTION["storage_nvme"]
        elif "ssd" in interface or "sata" in interface:
            total += COMPONENT_POWER_CONSUMPTION["storage_sata"]
        else:
            total += COMPONENT_POWER_CONSUMPTION["storage_hdd"]

    cooling = selected.get("cooling")
    if cooling is not None:
        kind = f"{cooling.title} {get_spec(cooling, 'type') or ''}".lower()
        is_liquid = "aio" in kind or "liquid" in kind
        total += COMPONENT_POWER_CONSUMPTION["cooling_aio" if is_liquid else "cooling_air"]

    if selected.get("case") is not None:
        total += COMPONENT_POWER_CONSUMPTION["case_fans"]

    return math.ceil(total)


def validate_build(selected: Build, absence_policy: AbsencePolicy = "permissive") -> BuildReport:
    """Run every heuristic rule once across all occupied slot pairs."""
    strict = absence_policy == "strict"
    issues: list[Reason] = []
    warnings: list[Reason] = []

    for rule in HEURISTIC_RULES.values():
        first_cat, second_cat = rule["categories"]
        first, second = selected.get(first_cat), selected.get(second_cat)
        if first is None or second is None:
            continue
        for reason in _run_rule(rule, first, second, strict):
            (issues if reason.severity == "error" else warnings).append(reason)

    estimated = estimate_power_consumption(selected)
    recommended = math.ceil(estimated * (100 + PSU_HEADROOM_PERCENT) / 100) if estimated else 0

    psu_wattage = parse_number(get_spec(selected.get("psu"), "wattage"))
    if psu_wattage and recommended and psu_wattage < recommended:
        warnings.append(Reason(
            "psu_capacity",
            f"PSU wattage {psu_wattage:g}W is below the recommended {recommended}W for this build",
            "warn",
        ))

    return BuildReport(
        is_valid=not issues,
        issues=issues,
        warnings=warnings,
        estimated_power=estimated,
        recommended_psu_wattage=recommended,
    )
