"""Tests for the PostgREST catalog client."""

import httpx
import pytest

from pcbuilder_mcp.models import CatalogError, CatalogTimeout
from pcbuilder_mcp.remote import RestCatalogClient, _component_from_record, _in_filter
from pcbuilder_mcp.rules import RuleEngine

PRODUCTS = {
    "cpu-1": {
        "id": "cpu-1",
        "title": "Ryzen 7 7800X3D",
        "category_id": "cat-cpu",
        "category": {"slug": "cpu"},
        "product_specifications": [
            {"template_id": "t-cpu-socket", "name": "Socket", "value": "AM5", "value_enum": "AM5"},
            {"template_id": "t-cpu-tdp", "name": "tdp", "value": "120W", "value_number": "120"},
            {"template_id": None, "name": "cache", "value": "96MB"},
            {"template_id": None, "name": "notes", "value": None},
        ],
    },
    "mb-1": {
        "id": "mb-1",
        "title": "B650",
        "category_id": "cat-mb",
        "category": {"slug": "motherboard"},
        "product_specifications": [
            {"template_id": "t-mb-socket", "name": "socket", "value": "AM4", "value_enum": "AM4"},
        ],
    },
}

CATEGORIES = [{"id": "cat-cpu", "slug": "cpu"}, {"id": "cat-mb", "slug": "motherboard"}]

RULES = [
    {
        "id": "rule-socket", "name": "Socket", "rule_type": "exact_match",
        "primary_category_id": "cat-cpu", "primary_specification_template_id": "t-cpu-socket",
        "secondary_category_id": "cat-mb", "secondary_specification_template_id": "t-mb-socket",
        "compatible_values": None, "min_value": None, "max_value": None,
    },
    {
        "id": "rule-broken", "name": "Broken", "rule_type": "fuzzy",
        "primary_category_id": "cat-cpu", "primary_specification_template_id": "t-cpu-socket",
        "secondary_category_id": "cat-mb", "secondary_specification_template_id": "t-mb-socket",
    },
]


def _ids_from_filter(value: str) -> list[str]:
    return [v.strip('"') for v in value[len("in.("):-1].split(",")]


class FakeCatalogAPI:
    """Records requests and answers like PostgREST."""

    def __init__(self):
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        table = request.url.path.rsplit("/", 1)[-1]
        params = request.url.params
        if table == "categories":
            slug = params["slug"].removeprefix("eq.")
            return httpx.Response(200, json=[{"id": c["id"]} for c in CATEGORIES if c["slug"] == slug])
        if table == "products" and params.get("select") == "id":
            category = params["category_id"].removeprefix("eq.")
            ids = [{"id": p["id"]} for p in PRODUCTS.values() if p["category_id"] == category]
            return httpx.Response(200, json=ids)
        if table == "products":
            wanted = _ids_from_filter(params["id"])
            return httpx.Response(200, json=[PRODUCTS[i] for i in wanted if i in PRODUCTS])
        if table == "compatibility_rules":
            return httpx.Response(200, json=RULES)
        return httpx.Response(404, json={"message": "not found"})


@pytest.fixture
def api():
    return FakeCatalogAPI()


@pytest.fixture
def client(api):
    http = httpx.AsyncClient(transport=httpx.MockTransport(api))
    return RestCatalogClient(base_url="https://catalog.test/rest/v1/", api_key="anon-key", http_client=http)


class TestHelpers:
    """Tests for request/record helpers."""

    def test_in_filter(self):
        assert _in_filter(["a", "b"]) == 'in.("a","b")'

    def test_in_filter_escapes_quotes(self):
        assert _in_filter(['x"y']) == 'in.("x\\"y")'

    def test_component_from_record(self):
        component = _component_from_record(PRODUCTS["cpu-1"])
        assert component.category == "cpu"
        assert component.category_id == "cat-cpu"
        assert component.title == "Ryzen 7 7800X3D"
        assert component.specifications == {"socket": "AM5", "tdp": "120W", "cache": "96MB"}
        assert set(component.values) == {"t-cpu-socket", "t-cpu-tdp"}
        assert component.value_for_template("t-cpu-tdp").value_number == 120.0
        assert component.value_for_template("t-cpu-socket").name == "socket"

    def test_typed_column_when_value_missing(self):
        component = _component_from_record({
            "id": "cpu-2",
            "category_id": "cat-cpu",
            "product_specifications": [
                {"template_id": "t-cpu-tdp", "name": "tdp", "value": None, "value_number": "120"},
                {"template_id": "t-cpu-socket", "name": "socket", "value": None, "value_enum": "AM5"},
                {"template_id": None, "name": "smt", "value": None, "value_boolean": False},
            ],
        })
        assert component.specifications == {"tdp": "120", "socket": "AM5", "smt": "false"}
        assert component.value_for_template("t-cpu-tdp").value_number == 120.0
        assert component.value_for_template("t-cpu-socket").raw == "AM5"

    def test_component_without_category_slug(self):
        component = _component_from_record({"id": "x", "category_id": "cat-gpu"})
        assert component.category == "cat-gpu"
        assert component.title == "x"


class TestRestCatalogClient:
    """Tests for RestCatalogClient against a mock transport."""

    @pytest.mark.asyncio
    async def test_get_components(self, client, api):
        result = await client.get_components(["cpu-1", "missing"])
        assert result["cpu-1"].title == "Ryzen 7 7800X3D"
        assert result["missing"] is None
        request = api.requests[0]
        assert request.url.path == "/rest/v1/products"
        assert request.headers["apikey"] == "anon-key"
        assert request.headers["authorization"] == "Bearer anon-key"

    @pytest.mark.asyncio
    async def test_components_cached(self, client, api):
        await client.get_components(["cpu-1"])
        await client.get_components(["cpu-1", "mb-1"])
        assert len(api.requests) == 2
        # Second request only asks for the uncached id
        assert _ids_from_filter(api.requests[1].url.params["id"]) == ["mb-1"]
        await client.get_components(["mb-1", "cpu-1"])
        assert len(api.requests) == 2

    @pytest.mark.asyncio
    async def test_invalidate(self, client, api):
        await client.get_components(["cpu-1"])
        await client.get_rules_between(["cat-cpu", "cat-mb"])
        assert client.invalidate("component") == 1
        await client.get_components(["cpu-1"])
        await client.get_rules_between(["cat-cpu", "cat-mb"])
        assert len(api.requests) == 3
        assert client.cache_stats()["entries"] == 2

    @pytest.mark.asyncio
    async def test_rules_skip_invalid(self, client, api):
        rules = await client.get_rules_between(["cat-mb", "cat-cpu"])
        assert [r.id for r in rules] == ["rule-socket"]
        params = api.requests[0].url.params
        assert params["primary_category_id"] == 'in.("cat-cpu","cat-mb")'
        await client.get_rules_between(["cat-cpu", "cat-mb"])
        assert len(api.requests) == 1

    @pytest.mark.asyncio
    async def test_rules_empty(self, client, api):
        assert await client.get_rules_between([]) == []
        assert api.requests == []

    @pytest.mark.asyncio
    async def test_component_ids_by_category(self, client, api):
        assert await client.get_component_ids_by_category("cat-mb") == ["mb-1"]
        products = [r for r in api.requests if r.url.path.endswith("/products")]
        assert products[0].url.params["category_id"] == "eq.cat-mb"

    @pytest.mark.asyncio
    async def test_component_ids_by_slug(self, client, api):
        assert await client.get_component_ids_by_category("motherboard") == ["mb-1"]
        assert api.requests[0].url.path == "/rest/v1/categories"
        assert api.requests[0].url.params["slug"] == "eq.motherboard"
        assert api.requests[1].url.params["category_id"] == "eq.cat-mb"
        # Slug and listing both cached
        assert await client.get_component_ids_by_category("motherboard") == ["mb-1"]
        assert len(api.requests) == 2

    @pytest.mark.asyncio
    async def test_engine_lists_by_slug(self, client):
        engine = RuleEngine(client)
        assert await engine.get_compatible_components({}, "motherboard") == ["mb-1"]
        assert await engine.get_compatible_components({"cpu": "cpu-1"}, "motherboard") == []

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
        client = RestCatalogClient(base_url="https://catalog.test", http_client=http)
        with pytest.raises(CatalogError, match="HTTP 500"):
            await client.get_components(["cpu-1"])

    @pytest.mark.asyncio
    async def test_unexpected_payload(self):
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})))
        client = RestCatalogClient(base_url="https://catalog.test", http_client=http)
        with pytest.raises(CatalogError, match="Unexpected"):
            await client.get_component_ids_by_category("cat-cpu")

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        client = RestCatalogClient(base_url="https://catalog.test", http_client=httpx.AsyncClient(
            transport=httpx.MockTransport(handler)
        ))
        with pytest.raises(CatalogTimeout):
            await client.get_rules_between(["cat-cpu"])

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = RestCatalogClient(base_url="https://catalog.test", http_client=httpx.AsyncClient(
            transport=httpx.MockTransport(handler)
        ))
        with pytest.raises(CatalogError, match="ConnectError"):
            await client.get_components(["cpu-1"])

    @pytest.mark.asyncio
    async def test_close(self, client):
        await client.close()
        assert client._client is None
