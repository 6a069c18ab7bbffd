"""Async client for a PostgREST-style catalog API (e.g. a Supabase project)."""

import logging
from typing import Any

import httpx

from .cache import TTLCache
from .config import (
    CATALOG_API_KEY,
    CATALOG_API_URL,
    CATALOG_CACHE_MAX_SIZE,
    CATALOG_CACHE_TTL,
    FETCH_TIMEOUT,
)
from .db.schema import rule_from_record
from .models import CatalogError, CatalogTimeout, CompatibilityRule, Component, RuleValidationError, SpecValue

logger = logging.getLogger(__name__)

_PRODUCT_SELECT = (
    "id,title,category_id,category:categories(slug),"
    "product_specifications(template_id,name,value,value_text,value_number,value_enum,value_boolean)"
)


def _in_filter(values: list[str]) -> str:
    """PostgREST list filter: ['a', 'b'] -> 'in.("a","b")'"""
    quoted = ",".join('"' + v.replace('"', '\\"') + '"' for v in values)
    return f"in.({quoted})"


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        return None


def _raw_value(spec: dict[str, Any]) -> str | None:
    """The display string of a specification row.

    Rows written by the typed editor may leave `value` empty and fill only a
    typed column; fall back to the first populated one.
    """
    if spec.get("value") is not None:
        return str(spec["value"])
    if spec.get("value_text") is not None:
        return str(spec["value_text"])
    number = _optional_float(spec.get("value_number"))
    if number is not None:
        return f"{number:g}"
    if spec.get("value_enum") is not None:
        return str(spec["value_enum"])
    if spec.get("value_boolean") is not None:
        return "true" if spec["value_boolean"] else "false"
    return None


def _component_from_record(record: dict[str, Any]) -> Component:
    """Normalize a products row (with embedded specifications) into a Component."""
    specifications: dict[str, str] = {}
    values: dict[str, SpecValue] = {}
    for spec in record.get("product_specifications") or []:
        name = spec.get("name")
        raw = _raw_value(spec)
        if not name or raw is None:
            continue
        specifications[name] = raw
        if spec.get("template_id"):
            values[spec["template_id"]] = SpecValue(
                name=name.strip().lower(),
                raw=raw,
                template_id=spec["template_id"],
                value_number=_optional_float(spec.get("value_number")),
                value_boolean=spec.get("value_boolean"),
                value_enum=spec.get("value_enum"),
                value_text=spec.get("value_text"),
            )

    category = record.get("category") or {}
    category_id = str(record.get("category_id") or "")
    return Component(
        id=str(record["id"]),
        category=category.get("slug") or category_id,
        specifications=specifications,
        title=record.get("title") or "",
        category_id=category_id,
        values=values,
    )


class RestCatalogClient:
    """Catalog repository backed by a PostgREST API.

    Components, rules and category listings are cached for CATALOG_CACHE_TTL,
    so administrator edits become visible once the entry expires.
    """

    def __init__(
        self,
        base_url: str = CATALOG_API_URL,
        api_key: str = CATALOG_API_KEY,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._client = http_client
        self._cache = TTLCache(ttl=CATALOG_CACHE_TTL, max_size=CATALOG_CACHE_MAX_SIZE)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=FETCH_TIMEOUT)
        return self._client

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["apikey"] = self._api_key
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def _get(self, table: str, params: dict[str, str]) -> list[dict[str, Any]]:
        """GET a table with PostgREST filters.

        Raises:
            CatalogTimeout: If the request timed out
            CatalogError: On network errors or non-2xx responses
        """
        url = f"{self._base_url}/{table}"
        try:
            response = await self._get_client().get(url, params=params, headers=self._headers())
        except httpx.TimeoutException as e:
            raise CatalogTimeout(f"Catalog API request to {table} timed out") from e
        except httpx.HTTPError as e:
            # Don't include the URL: it may carry the API key in some deployments
            raise CatalogError(f"Catalog API request to {table} failed ({type(e).__name__})") from e
        if response.status_code >= 400:
            raise CatalogError(f"Catalog API returned HTTP {response.status_code} for {table}")
        data = response.json()
        if not isinstance(data, list):
            raise CatalogError(f"Unexpected catalog API response for {table}")
        return data

    async def get_components(self, ids: list[str]) -> dict[str, Component | None]:
        cached, missing = self._cache.get_many("component", ids)
        result: dict[str, Component | None] = dict(cached)
        if missing:
            rows = await self._get("products", {"select": _PRODUCT_SELECT, "id": _in_filter(missing)})
            fetched = {}
            for row in rows:
                component = _component_from_record(row)
                fetched[component.id] = component
                self._cache.set(TTLCache.key("component", component.id), component)
            for component_id in missing:
                result[component_id] = fetched.get(component_id)
        return result

    async def get_rules_between(self, category_ids: list[str]) -> list[CompatibilityRule]:
        unique = sorted(set(category_ids))
        if not unique:
            return []
        cache_key = TTLCache.key("rules", ",".join(unique))
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        rows = await self._get("compatibility_rules", {
            "select": "*",
            "primary_category_id": _in_filter(unique),
            "secondary_category_id": _in_filter(unique),
        })
        rules = []
        for row in rows:
            try:
                rules.append(rule_from_record(row))
            except (RuleValidationError, KeyError, ValueError) as e:
                logger.warning(f"Skipping invalid compatibility rule {row.get('id', '?')}: {e}")
        self._cache.set(cache_key, rules)
        return rules

    async def _resolve_category_id(self, category: str) -> str:
        """Category id for an id or slug ("motherboard" -> its id). Unknown slugs pass through as ids."""
        cache_key = TTLCache.key("category_id", category)
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached
        rows = await self._get("categories", {"select": "id", "slug": f"eq.{category.strip().lower()}"})
        category_id = str(rows[0]["id"]) if rows and rows[0].get("id") else category
        self._cache.set(cache_key, category_id)
        return category_id

    async def get_component_ids_by_category(self, category: str) -> list[str]:
        category_id = await self._resolve_category_id(category)
        cache_key = TTLCache.key("category", category_id)
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached
        rows = await self._get("products", {"select": "id", "category_id": f"eq.{category_id}"})
        ids = [str(row["id"]) for row in rows if row.get("id")]
        self._cache.set(cache_key, ids)
        return ids

    def invalidate(self, namespace: str = "") -> int:
        """Drop cached catalog data, e.g. invalidate("rules") after an administrator edits rules."""
        dropped = self._cache.invalidate(f"{namespace}:" if namespace else "")
        logger.info(f"Invalidated {dropped} cached catalog entries ({namespace or 'all'})")
        return dropped

    def cache_stats(self) -> dict[str, int]:
        return self._cache.stats()

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
