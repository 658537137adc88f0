"""Tests for the embedded-state tier."""

import json

from bs4 import BeautifulSoup

from pricehunt.extraction.embedded_state import EmbeddedStateExtractor, find_candidates_in_json
from pricehunt.extraction.models import ExtractionMethod

BASE = "https://www.example.com"


def _extract(html: str):
    return EmbeddedStateExtractor().extract(BeautifulSoup(html, "html.parser"), BASE)


class TestNextData:
    def test_page_props_walked(self):
        payload = {
            "props": {
                "pageProps": {
                    "results": [
                        {"name": "Tata Salt 1kg", "sellingPrice": 28, "mrp": 30,
                         "imageUrl": "/img/salt.jpg", "url": "/p/tata-salt"},
                        {"name": "Aashirvaad Atta 5kg", "price": "245"},
                    ]
                }
            },
            "buildId": "abc",
        }
        html = (
            '<html><body><script id="__NEXT_DATA__" type="application/json">'
            f"{json.dumps(payload)}</script></body></html>"
        )
        candidates = _extract(html)
        assert [c.name for c in candidates] == ["Tata Salt 1kg", "Aashirvaad Atta 5kg"]
        salt = candidates[0]
        assert salt.price == 28.0
        assert salt.original_price == 30.0
        assert salt.image_url == "https://www.example.com/img/salt.jpg"
        assert salt.confidence == 0.85
        assert salt.method == ExtractionMethod.EMBEDDED_STATE

    def test_next_data_not_counted_twice(self):
        payload = {"props": {"pageProps": {"items": [{"name": "Tata Salt 1kg", "price": 28}]}}}
        html = (
            '<script id="__NEXT_DATA__" type="application/json">'
            f"{json.dumps(payload)}</script>"
        )
        assert len(_extract(html)) == 1


class TestWindowState:
    def test_initial_state_assignment(self):
        state = {"catalog": {"products": [{"title": "Dettol Handwash 200ml", "salePrice": 99}]}}
        html = f"<script>window.__INITIAL_STATE__ = {json.dumps(state)};window.other = 1;</script>"
        candidates = _extract(html)
        assert len(candidates) == 1
        assert candidates[0].name == "Dettol Handwash 200ml"

    def test_non_json_payload_falls_back_to_key_pairs(self):
        html = (
            "<script>window.__NUXT__=(function(a){return {data:[{"
            '"name":"Fortune Sunflower Oil 1L","price":"165"}]}}(1));</script>'
        )
        candidates = _extract(html)
        assert len(candidates) == 1
        assert candidates[0].price == 165.0


class TestJsonWalk:
    def test_depth_bound(self):
        node = {"name": "Deep Product Name", "price": 50}
        for _ in range(12):
            node = {"child": node}
        assert find_candidates_in_json(
            node, BASE, confidence=0.9, method=ExtractionMethod.NATIVE_API
        ) == []

    def test_invalid_records_skipped(self):
        payload = [
            {"name": "Add to Cart", "price": 10},
            {"name": "Maggi Noodles 70g", "price": 14},
            {"name": "Gold Coin 10g", "price": 99_999},
        ]
        candidates = find_candidates_in_json(
            payload, BASE, confidence=0.95, method=ExtractionMethod.NATIVE_API
        )
        assert [c.name for c in candidates] == ["Maggi Noodles 70g"]
