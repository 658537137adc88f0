"""Tests for candidate validation rules and price parsing."""

import logging

import pytest

from pricehunt.config.settings import ExtractionConfig
from pricehunt.extraction.models import ExtractionCandidate, ExtractionMethod
from pricehunt.extraction.validation import (
    build_candidate,
    currency_amounts,
    is_valid_name,
    resolve_url,
    select_original_price,
    select_price,
    validate_candidate,
)

BASE = "https://www.example.com"


class TestNames:
    @pytest.mark.parametrize(
        "name",
        ["Amul Toned Milk 500ml", "Tata Salt 1kg", "Maggi 2-Minute Noodles 70g"],
    )
    def test_product_names_accepted(self, name):
        assert is_valid_name(name) is True

    @pytest.mark.parametrize(
        "name",
        [
            "",
            "ab",
            "x" * 151,
            "12345",
            "Add to Cart",
            "search results",
            "10-15 mins",
            "8 minutes",
            "Free Delivery",
            "Out of stock",
            "Sold out - notify me",
            "50% off",
        ],
    )
    def test_ui_chrome_rejected(self, name):
        assert is_valid_name(name) is False

    def test_length_bounds_follow_config(self):
        config = ExtractionConfig(min_name_length=10)
        assert is_valid_name("Tata Salt", config) is False


class TestPrices:
    def test_currency_prefixes(self):
        text = "₹29 Rs. 45 Rs 50 INR 1,299 MRP: ₹60"
        assert currency_amounts(text) == [29.0, 45.0, 50.0, 1299.0, 60.0]

    def test_selling_price_is_lowest_in_bounds(self):
        assert select_price("MRP ₹120 now ₹99") == 99.0

    def test_out_of_bounds_amounts_ignored(self):
        assert select_price("₹0 and ₹75,000") is None

    def test_original_price_within_ratio(self):
        assert select_original_price("₹99 ₹120", 99.0) == 120.0

    def test_original_price_beyond_ratio_dropped(self):
        assert select_original_price("₹20 ₹100", 20.0) is None

    def test_four_digit_amount_without_separator(self):
        assert currency_amounts("₹1299") == [1299.0]
        assert select_price("Sony WH-1000XM4 ₹12999") == 12999.0

    def test_lakh_grouping_and_paise(self):
        assert currency_amounts("Rs. 1,29,999.50 or ₹12.5") == [129999.5, 12.5]


class TestUrls:
    def test_relative_path(self):
        assert resolve_url("/p/123", BASE) == "https://www.example.com/p/123"

    def test_bare_relative_path(self):
        assert resolve_url("p/123", BASE + "/") == "https://www.example.com/p/123"

    def test_protocol_relative(self):
        assert resolve_url("//cdn.example.com/a.jpg", BASE) == "https://cdn.example.com/a.jpg"

    def test_absolute_untouched(self):
        assert resolve_url("https://other.in/x", BASE) == "https://other.in/x"

    def test_blank_stays_blank(self):
        assert resolve_url("  ", BASE) == ""
        assert resolve_url(None, BASE) == ""


class TestBuildCandidate:
    def test_builds_from_loose_fields(self):
        candidate = build_candidate(
            name="  Tata   Salt 1kg ",
            price="28",
            original_price=30,
            image_url="/img/salt.jpg",
            url="/p/tata-salt",
            method=ExtractionMethod.EMBEDDED_STATE,
            confidence=0.85,
            base_url=BASE,
        )
        assert candidate is not None
        assert candidate.name == "Tata Salt 1kg"
        assert candidate.price == 28.0
        assert candidate.original_price == 30.0
        assert candidate.image_url == "https://www.example.com/img/salt.jpg"
        assert candidate.url == "https://www.example.com/p/tata-salt"
        assert candidate.discount_percent == 6

    def test_implausible_original_price_dropped(self):
        candidate = build_candidate(
            name="Tata Salt 1kg",
            price=20,
            original_price=100,
            method=ExtractionMethod.JSON_LD,
            confidence=0.95,
            base_url=BASE,
        )
        assert candidate is not None
        assert candidate.original_price is None

    def test_missing_price_rejected(self):
        assert (
            build_candidate(
                name="Tata Salt 1kg",
                price=None,
                method=ExtractionMethod.JSON_LD,
                confidence=0.95,
                base_url=BASE,
            )
            is None
        )

    def test_rejection_logged_at_debug(self, caplog):
        caplog.set_level(logging.DEBUG, logger="pricehunt.extraction.validation")
        candidate = ExtractionCandidate(
            name="Gold Coin 10g", price=99_999, method=ExtractionMethod.AI, confidence=0.9
        )
        assert validate_candidate(candidate) is False
        records = [r for r in caplog.records if r.getMessage() == "ValidationRejected"]
        assert records and records[0].rejected_field == "price"

    def test_confidence_clamped(self):
        candidate = ExtractionCandidate(
            name="Tata Salt 1kg", price=28, method=ExtractionMethod.AI, confidence=1.7
        )
        assert candidate.confidence == 1.0
