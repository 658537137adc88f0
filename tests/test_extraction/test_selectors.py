"""Tests for the learned selector table."""

import json

from pricehunt.extraction.selectors import LearnedSelectorTable


class TestLearnedSelectorTable:
    def test_learn_and_get(self):
        table = LearnedSelectorTable()
        table.learn("shop", "div.product-tile")
        learned = table.get("shop")
        assert learned is not None
        assert learned.selector == "div.product-tile"
        assert learned.consecutive_misses == 0

    def test_get_returns_copy(self):
        table = LearnedSelectorTable()
        table.learn("shop", "div.product-tile")
        table.get("shop").success_count = 99
        assert table.get("shop").success_count == 0

    def test_counters(self):
        table = LearnedSelectorTable()
        table.learn("shop", "div.product-tile")
        table.record_replay("shop", hit=True)
        table.record_replay("shop", hit=False)
        learned = table.get("shop")
        assert learned.success_count == 1
        assert learned.failure_count == 1
        assert learned.consecutive_misses == 1

    def test_evicts_after_streak(self):
        table = LearnedSelectorTable(eviction_misses=2)
        table.learn("shop", "div.product-tile")
        assert table.record_replay("shop", hit=False) is False
        assert table.record_replay("shop", hit=False) is False
        assert table.record_replay("shop", hit=False) is True
        assert table.get("shop") is None

    def test_replay_for_unknown_source(self):
        assert LearnedSelectorTable().record_replay("ghost", hit=False) is False

    def test_remove(self):
        table = LearnedSelectorTable()
        table.learn("shop", "div.product-tile")
        assert table.remove("shop") is True
        assert table.remove("shop") is False
        assert table.all() == []


class TestPersistence:
    def test_round_trip(self, tmp_path):
        path = tmp_path / "selectors.json"
        table = LearnedSelectorTable(path)
        table.learn("shop", "[data-testid='product-card']")
        table.record_replay("shop", hit=True)

        reloaded = LearnedSelectorTable(path)
        learned = reloaded.get("shop")
        assert learned.selector == "[data-testid='product-card']"
        assert learned.success_count == 1
        assert not (tmp_path / "selectors.tmp").exists()

    def test_eviction_is_persisted(self, tmp_path):
        path = tmp_path / "selectors.json"
        table = LearnedSelectorTable(path, eviction_misses=0)
        table.learn("shop", "div.product-tile")
        table.record_replay("shop", hit=False)
        assert json.loads(path.read_text()) == []

    def test_corrupt_file_starts_empty(self, tmp_path, caplog):
        path = tmp_path / "selectors.json"
        path.write_text("{not json")
        table = LearnedSelectorTable(path)
        assert table.all() == []
        assert any(
            getattr(r, "error_code", None) == "SELECTOR_PERSIST_FAILED" for r in caplog.records
        )

    def test_missing_file_is_empty(self, tmp_path):
        assert LearnedSelectorTable(tmp_path / "absent.json").all() == []
