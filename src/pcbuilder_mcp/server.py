"""PC Builder MCP Server - Compatibility checks for PC component builds."""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastmcp import FastMCP
from mcp.types import ToolAnnotations
from starlette.middleware import Middleware
from starlette.responses import JSONResponse
from starlette.routing import Route

from . import __version__
from .candidates import annotate_candidates, filter_candidates, filter_candidates_exhaustive
from .config import (
    CATALOG_API_URL,
    CATALOG_BACKEND,
    HEURISTIC_ABSENCE_POLICY,
    HTTP_HOST,
    HTTP_PORT,
    MAX_PRODUCTS_PER_REQUEST,
    RATE_LIMIT_REQUESTS,
    RATE_LIMIT_WINDOW,
    TRUST_PROXY_HEADERS,
)
from .db import SQLiteRepository, close_db, get_db
from .heuristics import Build, explain_conflicts, is_compatible, validate_build
from .models import Component
from .remote import RestCatalogClient
from .rules import RuleEngine
from .validator import validate_configuration
from .web import AccessLogFilter, RateLimitMiddleware

logger = logging.getLogger(__name__)

# Global state
_engine: RuleEngine | None = None
_rest_client: RestCatalogClient | None = None
_catalog_info: dict[str, Any] = {}  # Counts taken at startup, reported by /health


def _create_engine() -> RuleEngine:
    """Build the rule engine over the configured catalog backend."""
    global _rest_client, _catalog_info
    if CATALOG_BACKEND == "rest":
        if not CATALOG_API_URL:
            raise RuntimeError("CATALOG_BACKEND=rest requires CATALOG_API_URL")
        _rest_client = RestCatalogClient()
        _catalog_info = {"backend": "rest"}
        logger.info(f"Using remote catalog at {CATALOG_API_URL}")
        return RuleEngine(_rest_client)

    db = get_db()
    stats = db.get_stats()
    _catalog_info = {
        "backend": "sqlite",
        "components": stats.get("components", 0),
        "rules": stats.get("compatibility_rules", 0),
    }
    logger.info(f"Catalog ready: {_catalog_info['components']} components, {_catalog_info['rules']} rules")
    return RuleEngine(SQLiteRepository(db))


def _get_engine() -> RuleEngine:
    global _engine
    if _engine is None:
        _engine = _create_engine()
    return _engine


@asynccontextmanager
async def lifespan(app):
    """Open the catalog on startup (not on first request) and release it on shutdown."""
    global _engine, _rest_client, _catalog_info
    _engine = _create_engine()

    yield

    if _rest_client:
        await _rest_client.close()
        _rest_client = None
    _engine = None
    _catalog_info = {}
    close_db()


# Create MCP server
mcp = FastMCP(
    name="pcbuilder",
    instructions=(
        "PC build compatibility checks. No auth required. Use check_candidate/filter_products/check_build "
        "for fast checks on component data you already have (socket, memory type, form factor, power, GPU "
        "clearance). Use check_components/compatible_components/validate_build_configuration for "
        "authoritative checks against the catalog's compatibility rules by component id."
    ),
    lifespan=lifespan,
)


# Helpers to handle JSON string arguments from MCP clients
def _parse_json_param(value: Any) -> Any:
    """Accept a dict/list argument, or the same value serialized as a JSON string.

    Some MCP clients send object and array parameters as JSON strings.
    Returns None for unparseable strings.
    """
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            logger.debug(f"Failed to parse parameter as JSON: {value[:100]!r}")
            return None
    return value


def _parse_component(value: Any) -> Component:
    data = _parse_json_param(value)
    if not isinstance(data, dict):
        raise ValueError("Component must be an object with 'id', 'category' and 'specifications'")
    return Component.from_dict(data)


def _parse_build(value: Any) -> Build:
    """Parse a build given as {slot: component} or as a list of components (slot = category)."""
    data = _parse_json_param(value)
    if data is None:
        if isinstance(value, str):
            raise ValueError("Build is not valid JSON")
        return {}
    build: Build = {}
    if isinstance(data, dict):
        for slot, item in data.items():
            build[slot] = _parse_component(item) if item else None
    elif isinstance(data, list):
        for item in data:
            component = _parse_component(item)
            build[component.category] = component
    else:
        raise ValueError("Build must be an object mapping slot to component, or a list of components")
    return build


def _parse_id_mapping(value: Any) -> dict[str, str] | None:
    data = _parse_json_param(value)
    if data is None:
        return None if isinstance(value, str) else {}
    if not isinstance(data, dict):
        return None
    return {str(k): str(v) for k, v in data.items() if v}


# Tools

@mcp.tool(
    annotations=ToolAnnotations(
        title="Check Candidate Against Build",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def check_candidate(
    build: dict[str, Any] | list[dict[str, Any]] | str,
    candidate: dict[str, Any] | str,
    strict: bool = False,
) -> dict:
    """Check one product against the components already selected in a build.

    Args:
        build: Selected components, either {"cpu": {...}, "motherboard": {...}} or a list of
               components. Each component is {"id", "category", "specifications": {name: value}}.
        candidate: The product being considered, same shape as a build component.
        strict: Treat missing specification data as a conflict (default False: unknown data never blocks)

    Returns:
        ok (False only for blocking conflicts), reasons [{code, message, severity}], messages
    """
    try:
        selected = _parse_build(build)
        product = _parse_component(candidate)
    except (ValueError, TypeError, KeyError) as e:
        return {"error": str(e)}

    result = is_compatible(selected, product, "strict" if strict else HEURISTIC_ABSENCE_POLICY)  # type: ignore[arg-type]
    return {
        "candidate_id": product.id,
        **result.to_dict(),
        "messages": explain_conflicts(result.reasons),
    }


@mcp.tool(
    annotations=ToolAnnotations(
        title="Filter Products For Build",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def filter_products(
    products: list[dict[str, Any]] | str,
    build: dict[str, Any] | list[dict[str, Any]] | str,
    target_category: str,
    annotate: bool = False,
) -> dict:
    """Narrow a product list to items compatible with the current build.

    Products with missing specification data are kept. Set annotate=True to also get a
    verdict with reasons for every input product (including removed ones).

    Args:
        products: Candidate products [{"id", "category", "specifications"}]
        build: Selected components (see check_candidate)
        target_category: Slot being filled, e.g. "motherboard", "ram", "case", "psu"
        annotate: Include per-product verdicts

    Returns:
        compatible_ids, total, removed, and annotations when requested
    """
    items = _parse_json_param(products)
    if not isinstance(items, list):
        return {"error": "products must be a list of components"}
    if len(items) > MAX_PRODUCTS_PER_REQUEST:
        return {"error": f"Too many products (max {MAX_PRODUCTS_PER_REQUEST})"}
    try:
        selected = _parse_build(build)
        candidates = [_parse_component(item) for item in items]
    except (ValueError, TypeError, KeyError) as e:
        return {"error": str(e)}

    compatible = filter_candidates(candidates, selected, target_category)
    result: dict[str, Any] = {
        "target_category": target_category,
        "compatible_ids": [c.id for c in compatible],
        "total": len(compatible),
        "removed": len(candidates) - len(compatible),
    }
    if annotate:
        result["annotations"] = annotate_candidates(candidates, selected)
    return result


@mcp.tool(
    annotations=ToolAnnotations(
        title="Check Whole Build",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def check_build(build: dict[str, Any] | list[dict[str, Any]] | str) -> dict:
    """Check every pair of selected components and estimate power draw.

    Args:
        build: Selected components (see check_candidate). Slots: cpu, motherboard, ram, gpu,
               psu, case, storage, cooling.

    Returns:
        is_valid, issues (blocking), warnings, estimated_power (W), recommended_psu_wattage (W)
    """
    try:
        selected = _parse_build(build)
    except (ValueError, TypeError, KeyError) as e:
        return {"error": str(e)}
    return validate_build(selected, HEURISTIC_ABSENCE_POLICY).to_dict()  # type: ignore[arg-type]


@mcp.tool(
    annotations=ToolAnnotations(
        title="Check Two Catalog Components",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def check_components(component1_id: str, component2_id: str) -> dict:
    """Check two catalog components against the compatibility rules between their categories.

    Args:
        component1_id: Catalog component id
        component2_id: Catalog component id

    Returns:
        is_compatible, reason (when incompatible), retryable (when the catalog was unavailable)
    """
    if not component1_id or not component2_id:
        return {"error": "Must provide component1_id and component2_id"}
    result = await _get_engine().check_component_compatibility(component1_id, component2_id)
    return result.to_dict()


@mcp.tool(
    annotations=ToolAnnotations(
        title="Find Compatible Catalog Components",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def compatible_components(selection: dict[str, str] | str, target_category: str) -> dict:
    """List catalog components in a category compatible with every selected component.

    Args:
        selection: Selected component ids by slot, e.g. {"cpu": "cpu-ryzen-7-7800x3d"}
        target_category: Category id or slug to list, e.g. "motherboard"

    Returns:
        component_ids and total
    """
    selected = _parse_id_mapping(selection)
    if selected is None:
        return {"error": "selection must be an object mapping slot to component id"}
    if not target_category:
        return {"error": "Must provide target_category"}
    ids = await filter_candidates_exhaustive(_get_engine(), selected, target_category)
    return {"target_category": target_category, "component_ids": ids, "total": len(ids)}


@mcp.tool(
    annotations=ToolAnnotations(
        title="Validate Catalog Build",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def validate_build_configuration(components: dict[str, str] | list[str] | str) -> dict:
    """Validate every pair of catalog components in a build against the compatibility rules.

    Args:
        components: Component ids by slot ({"cpu": "...", "motherboard": "..."}), or a list of ids
                    for builds with several parts in one category

    Returns:
        is_compatible and incompatible_components [{component1_id, component2_id, reason}]
    """
    data = _parse_json_param(components)
    if isinstance(data, dict):
        build: dict[str, str] | list[str] = {str(k): str(v) for k, v in data.items() if v}
    elif isinstance(data, list):
        build = [str(v) for v in data if v]
    else:
        return {"error": "components must be an object mapping slot to id, or a list of ids"}
    result = await validate_configuration(_get_engine(), build)
    return result.to_dict()


# Health check endpoint
async def health(request):
    """Liveness plus catalog readiness; 503 until the catalog is open."""
    ready = _engine is not None
    catalog = dict(_catalog_info)
    if _rest_client is not None:
        catalog["cache"] = _rest_client.cache_stats()
    return JSONResponse(
        {
            "status": "healthy" if ready else "starting",
            "service": "pcbuilder-mcp",
            "version": __version__,
            "catalog": catalog,
        },
        status_code=200 if ready else 503,
    )


# Create ASGI app
def create_app():
    """Create the ASGI application: MCP at /mcp (rate limited) and /health."""
    middleware = [
        Middleware(
            RateLimitMiddleware,
            requests_per_window=RATE_LIMIT_REQUESTS,
            window=RATE_LIMIT_WINDOW,
            exempt_paths=("/health",),
            trust_forwarded=TRUST_PROXY_HEADERS,
        ),
    ]

    app = mcp.http_app(
        path="/mcp",
        middleware=middleware,
        transport="streamable-http",
        stateless_http=True,
    )

    app.routes.append(Route("/health", health))

    return app


app = create_app()


def main():
    """Run the server."""
    import uvicorn

    logging.getLogger("uvicorn.access").addFilter(AccessLogFilter(("/health",)))

    uvicorn.run(
        "pcbuilder_mcp.server:app",
        host=HTTP_HOST,
        port=HTTP_PORT,
        lifespan="on",
    )


if __name__ == "__main__":
    main()
