"""Tests for CLI output formatting."""

import json

from pinegate.cli.output import format_catalog, format_result, format_summary


class TestFormatResult:

    def test_renders_fields(self):
        output = format_result(
            {"success": True, "grant_id": "g-1", "status": "assigned", "expires_at": None},
            "Assign",
        )
        assert "Assign" in output
        assert "g-1" in output
        assert "assigned" in output
        assert "—" in output

    def test_nested_dict_inlined(self):
        output = format_result({"success": True, "verification": {"has_access": True}}, "Assign")
        assert '"has_access": true' in output

    def test_json_mode(self):
        result = {"success": False, "code": "E-3001"}
        assert json.loads(format_result(result, "Assign", as_json=True)) == result


class TestFormatSummary:

    def test_table_counts_lists(self):
        output = format_summary(
            {"total": 2, "processed": 1, "errors": 1, "failures": [{"grant_id": "g"}]},
            "Trial Cleanup",
        )
        assert "Trial Cleanup" in output
        assert "failures" in output
        assert "grant_id" not in output

    def test_json_mode_keeps_lists(self):
        summary = {"total": 1, "failures": [{"grant_id": "g"}]}
        assert json.loads(format_summary(summary, "x", as_json=True)) == summary


class TestFormatCatalog:

    def test_empty(self):
        assert format_catalog({"seller_id": "s1", "count": 0, "scripts": []}) == \
            "No published scripts found for seller s1."

    def test_table(self):
        output = format_catalog({
            "seller_id": "s1",
            "count": 1,
            "scripts": [{"script_id": "AbC123", "title": "Alpha", "pine_id": "PUB;abc", "likes": 3}],
        })
        assert "Catalog (1 scripts)" in output
        assert "AbC123" in output
        assert "Alpha" in output
