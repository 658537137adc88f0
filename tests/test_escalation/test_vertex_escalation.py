"""Tests for the Vertex AI escalation client, with the model stubbed out."""

import json

import pytest

from pricehunt.config.settings import VertexConfig
from pricehunt.errors import EscalationError
from pricehunt.escalation.engine import VertexEscalationClient
from pricehunt.extraction.models import ExtractionMethod

from tests.test_orchestrator.fakes import make_source

BASE = "https://shop.example.com"


class _Response:
    def __init__(self, text: str) -> None:
        self.text = text


class _StubModel:
    def __init__(self, payload=None, error: Exception | None = None) -> None:
        self.payload = payload
        self.error = error
        self.prompts: list[str] = []

    async def generate_content_async(self, prompt, generation_config=None):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return _Response(json.dumps(self.payload))


def _client(model: _StubModel, **vertex) -> VertexEscalationClient:
    client = VertexEscalationClient(VertexConfig(project_id="test-project", **vertex))
    client._client = model
    client._initialized = True
    return client


class TestParseProducts:
    def test_valid_records(self):
        products = [
            {
                "name": "Amul Taaza Toned Milk 500 ml",
                "price": 27,
                "original_price": 30,
                "product_url": "/pn/amul",
                "confidence": 0.9,
            },
            {"name": "Mother Dairy Curd 400 g", "price": 35},
        ]
        candidates = VertexEscalationClient().parse_products(products, BASE)

        assert [c.name for c in candidates] == [
            "Amul Taaza Toned Milk 500 ml",
            "Mother Dairy Curd 400 g",
        ]
        assert candidates[0].url == "https://shop.example.com/pn/amul"
        assert candidates[0].confidence == 0.9
        assert candidates[1].confidence == 0.75
        assert all(c.method == ExtractionMethod.AI for c in candidates)

    def test_implausible_records_dropped(self):
        products = [
            {"name": "Add to Cart", "price": 20},
            {"name": "Gold Coin 10 g", "price": 75_000},
            {"name": "Amul Butter 100 g", "price": "free"},
            "not a record",
            {"name": "Amul Butter 100 g", "price": 56},
            {"name": "amul  butter 100 G", "price": 57},
        ]
        candidates = VertexEscalationClient().parse_products(products, BASE)
        assert [c.name for c in candidates] == ["Amul Butter 100 g"]

    def test_non_list(self):
        assert VertexEscalationClient().parse_products({"name": "x"}, BASE) == []

    def test_capped(self):
        products = [{"name": f"Grocery Item Number {i}", "price": 10 + i} for i in range(30)]
        assert len(VertexEscalationClient().parse_products(products, BASE)) == 15


class TestAvailability:
    @pytest.mark.asyncio
    async def test_unconfigured_is_unavailable(self):
        client = VertexEscalationClient(VertexConfig(project_id=""))
        assert await client.initialize() is False
        assert client.is_available is False
        with pytest.raises(EscalationError):
            await client.extract("<html></html>", make_source("a"), "milk", BASE)


class TestExtract:
    @pytest.mark.asyncio
    async def test_single_source(self):
        model = _StubModel({"products": [{"name": "Amul Gold Milk 1 L", "price": 68}]})
        candidates = await _client(model).extract(
            "<html>markup</html>", make_source("a"), "milk", BASE
        )
        assert [c.name for c in candidates] == ["Amul Gold Milk 1 L"]
        assert "'milk'" in model.prompts[0]

    @pytest.mark.asyncio
    async def test_markup_truncated(self):
        model = _StubModel({"products": []})
        await _client(model, max_markup_chars=50).extract(
            "<p>" + "x" * 500 + "</p>", make_source("a"), "milk", BASE
        )
        assert "<p>" + "x" * 47 in model.prompts[0]
        assert "x" * 48 not in model.prompts[0]

    @pytest.mark.asyncio
    async def test_model_error_raises(self, caplog):
        model = _StubModel(error=RuntimeError("quota exceeded"))
        with pytest.raises(EscalationError, match="quota exceeded"):
            await _client(model).extract("<html></html>", make_source("a"), "milk", BASE)
        assert any(
            getattr(r, "error_code", None) == "AI_ESCALATION_FAILED" for r in caplog.records
        )

    @pytest.mark.asyncio
    async def test_batch_maps_results_per_source(self):
        model = _StubModel(
            {
                "results": [
                    {"source_id": "a", "products": [{"name": "Amul Gold Milk 1 L", "price": 68}]},
                    {"source_id": "b", "products": []},
                ]
            }
        )
        a, b, c = make_source("a"), make_source("b"), make_source("c")
        results = await _client(model).extract_many(
            [(a, "<html>a</html>", a.base_url), (b, "<html>b</html>", b.base_url),
             (c, "<html>c</html>", c.base_url)],
            "milk",
        )

        assert len(model.prompts) == 1
        assert "=== SOURCE a" in model.prompts[0]
        assert "=== SOURCE c" in model.prompts[0]
        assert [x.name for x in results["a"]] == ["Amul Gold Milk 1 L"]
        assert results["b"] == []
        assert isinstance(results["c"], EscalationError)

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        model = _StubModel()
        assert await _client(model).extract_many([], "milk") == {}
        assert model.prompts == []
