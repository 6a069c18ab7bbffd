"""Tests for MCP tool wrappers, argument parsing and the HTTP app."""

import json

import pytest
from conftest import FakeRepository

import pcbuilder_mcp.server as srv
from pcbuilder_mcp.rules import RuleEngine


def _fn(tool):
    """The plain coroutine behind a registered tool."""
    return getattr(tool, "fn", tool)


AM5_CPU = {"id": "cpu-am5", "category": "cpu", "specifications": {"socket": "AM5", "tdp": "120W"}}
AM4_BOARD = {"id": "mb-am4", "category": "motherboard", "specifications": {"socket": "AM4", "memory_type": "DDR4"}}
AM5_BOARD = {"id": "mb-am5", "category": "motherboard", "specifications": {"socket": "AM5", "memory_type": "DDR5"}}


@pytest.fixture
def engine(repository):
    original = srv._engine
    srv._engine = RuleEngine(repository)
    yield srv._engine
    srv._engine = original


class TestParsing:
    """Tests for tool argument parsing."""

    def test_build_from_mapping(self):
        build = srv._parse_build({"cpu": AM5_CPU, "gpu": None})
        assert build["cpu"].specifications["socket"] == "AM5"
        assert build["gpu"] is None

    def test_build_from_list(self):
        build = srv._parse_build([AM5_CPU, AM4_BOARD])
        assert set(build) == {"cpu", "motherboard"}

    def test_build_from_json_string(self):
        build = srv._parse_build(json.dumps({"cpu": AM5_CPU}))
        assert build["cpu"].id == "cpu-am5"

    def test_build_invalid_json(self):
        with pytest.raises(ValueError, match="not valid JSON"):
            srv._parse_build("{cpu:")

    def test_build_wrong_shape(self):
        with pytest.raises(ValueError):
            srv._parse_build(42)

    def test_component_requires_category(self):
        with pytest.raises(ValueError, match="'id' and 'category'"):
            srv._parse_component({"id": "x"})

    def test_component_spec_list(self):
        component = srv._parse_component({
            "id": "x",
            "categorySlug": "ram",
            "specifications": [{"name": "Type", "value": "DDR5"}, {"name": "", "value": "skip"}],
        })
        assert component.category == "ram"
        assert component.specifications == {"type": "DDR5"}

    def test_id_mapping(self):
        assert srv._parse_id_mapping({"cpu": "a", "gpu": ""}) == {"cpu": "a"}
        assert srv._parse_id_mapping('{"cpu": "a"}') == {"cpu": "a"}
        assert srv._parse_id_mapping(None) == {}
        assert srv._parse_id_mapping("nope") is None
        assert srv._parse_id_mapping(["a"]) is None


class TestHeuristicTools:
    """Tools that work on caller-supplied component data."""

    @pytest.mark.asyncio
    async def test_check_candidate_conflict(self):
        result = await _fn(srv.check_candidate)(build={"cpu": AM5_CPU}, candidate=AM4_BOARD)
        assert result["candidate_id"] == "mb-am4"
        assert result["ok"] is False
        assert result["reasons"][0]["code"] == "socket_mismatch"
        assert result["messages"]

    @pytest.mark.asyncio
    async def test_check_candidate_ok(self):
        result = await _fn(srv.check_candidate)(build=[AM5_CPU], candidate=AM5_BOARD)
        assert result["ok"] is True
        assert result["reasons"] == []

    @pytest.mark.asyncio
    async def test_check_candidate_strict_missing_data(self):
        board = {"id": "mb-x", "category": "motherboard", "specifications": {}}
        lenient = await _fn(srv.check_candidate)(build={"cpu": AM5_CPU}, candidate=board)
        strict = await _fn(srv.check_candidate)(build={"cpu": AM5_CPU}, candidate=board, strict=True)
        assert lenient["ok"] is True
        assert strict["ok"] is False

    @pytest.mark.asyncio
    async def test_check_candidate_bad_input(self):
        result = await _fn(srv.check_candidate)(build={}, candidate={"id": "x"})
        assert "error" in result

    @pytest.mark.asyncio
    async def test_filter_products(self):
        result = await _fn(srv.filter_products)(
            products=[AM5_BOARD, AM4_BOARD],
            build={"cpu": AM5_CPU},
            target_category="motherboard",
            annotate=True,
        )
        assert result["compatible_ids"] == ["mb-am5"]
        assert result["total"] == 1
        assert result["removed"] == 1
        assert [a["id"] for a in result["annotations"]] == ["mb-am5", "mb-am4"]

    @pytest.mark.asyncio
    async def test_filter_products_requires_list(self):
        result = await _fn(srv.filter_products)(products={"a": 1}, build={}, target_category="gpu")
        assert result == {"error": "products must be a list of components"}

    @pytest.mark.asyncio
    async def test_filter_products_limit(self, monkeypatch):
        monkeypatch.setattr(srv, "MAX_PRODUCTS_PER_REQUEST", 1)
        result = await _fn(srv.filter_products)(products=[AM5_BOARD, AM4_BOARD], build={}, target_category="motherboard")
        assert "Too many products" in result["error"]

    @pytest.mark.asyncio
    async def test_check_build(self):
        result = await _fn(srv.check_build)(build={"cpu": AM5_CPU, "motherboard": AM4_BOARD})
        assert result["is_valid"] is False
        assert result["issues"]
        assert result["estimated_power"] > 0

    @pytest.mark.asyncio
    async def test_check_build_invalid_json(self):
        result = await _fn(srv.check_build)(build="{not json")
        assert result == {"error": "Build is not valid JSON"}


class TestCatalogTools:
    """Tools backed by the declarative rule engine."""

    @pytest.mark.asyncio
    async def test_check_components(self, engine):
        result = await _fn(srv.check_components)(component1_id="cpu-am5", component2_id="mb-am4")
        assert result["is_compatible"] is False
        assert "reason" in result

    @pytest.mark.asyncio
    async def test_check_components_requires_ids(self, engine):
        result = await _fn(srv.check_components)(component1_id="", component2_id="mb-am4")
        assert result == {"error": "Must provide component1_id and component2_id"}

    @pytest.mark.asyncio
    async def test_compatible_components(self, engine):
        result = await _fn(srv.compatible_components)(selection={"cpu": "cpu-am5"}, target_category="motherboard")
        assert result == {"target_category": "motherboard", "component_ids": ["mb-am5"], "total": 1}

    @pytest.mark.asyncio
    async def test_compatible_components_bad_selection(self, engine):
        result = await _fn(srv.compatible_components)(selection="[", target_category="motherboard")
        assert "error" in result

    @pytest.mark.asyncio
    async def test_validate_build_configuration(self, engine):
        result = await _fn(srv.validate_build_configuration)(components=["cpu-am4", "mb-am5"])
        assert result["is_compatible"] is False
        assert result["incompatible_components"][0]["component2_id"] == "mb-am5"

    @pytest.mark.asyncio
    async def test_validate_build_configuration_ok(self, engine):
        result = await _fn(srv.validate_build_configuration)(components={"cpu": "cpu-am5", "motherboard": "mb-am5"})
        assert result == {"is_compatible": True}

    @pytest.mark.asyncio
    async def test_validate_build_configuration_bad_input(self, engine):
        result = await _fn(srv.validate_build_configuration)(components=7)
        assert "error" in result

    @pytest.mark.asyncio
    async def test_catalog_failure_degrades(self):
        failing = FakeRepository([], [])
        failing.fail = True
        original = srv._engine
        srv._engine = RuleEngine(failing)
        try:
            result = await _fn(srv.validate_build_configuration)(components=["a", "b"])
            assert result["is_compatible"] is False
            assert result["incompatible_components"][0]["reason"] == "Error validating configuration"
        finally:
            srv._engine = original


class TestHealth:
    """Tests for the health endpoint and app wiring."""

    @pytest.mark.asyncio
    async def test_health(self, engine, monkeypatch):
        monkeypatch.setattr(srv, "_catalog_info", {"backend": "sqlite", "components": 9, "rules": 4})
        response = await srv.health(None)
        body = json.loads(response.body)
        assert response.status_code == 200
        assert body["status"] == "healthy"
        assert body["service"] == "pcbuilder-mcp"
        assert body["catalog"] == {"backend": "sqlite", "components": 9, "rules": 4}

    @pytest.mark.asyncio
    async def test_health_before_catalog_open(self, monkeypatch):
        monkeypatch.setattr(srv, "_engine", None)
        response = await srv.health(None)
        assert response.status_code == 503
        assert json.loads(response.body)["status"] == "starting"

    def test_app_has_health_route(self):
        assert any(getattr(r, "path", None) == "/health" for r in srv.app.routes)

    def test_app_rate_limited(self):
        assert any(m.cls is srv.RateLimitMiddleware for m in srv.app.user_middleware)
