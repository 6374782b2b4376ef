"""Tests for comparing the whitelist registry with the live schema."""

from db_admin.schema.comparator import compare_whitelist
from db_admin.whitelist import WhitelistRegistry


def make_registry() -> WhitelistRegistry:
    return WhitelistRegistry.from_tables(
        {"authors": ["id", "name"], "books": ["id", "title"]}
    )


class TestCompareWhitelist:
    """Whitelist compared against the live schema."""

    def test_exact_match_valid(self) -> None:
        result = compare_whitelist(
            {"authors": {"id", "name"}, "books": {"id", "title"}}, make_registry()
        )
        assert result.valid
        assert result.error_count == 0

    def test_extra_columns_ignored(self) -> None:
        """Columns outside the whitelist are simply unreachable."""
        result = compare_whitelist(
            {"authors": {"id", "name", "secret"}, "books": {"id", "title"}}, make_registry()
        )
        assert result.valid

    def test_missing_table(self) -> None:
        result = compare_whitelist({"authors": {"id", "name"}}, make_registry())
        assert not result.valid
        assert result.missing_tables == ["books"]

    def test_missing_column(self) -> None:
        result = compare_whitelist(
            {"authors": {"id"}, "books": {"id", "title"}}, make_registry()
        )
        assert not result.valid
        [diff] = result.missing_columns
        assert (diff.table, diff.column) == ("authors", "name")

    def test_unlisted_tables_informational(self) -> None:
        result = compare_whitelist(
            {"authors": {"id", "name"}, "books": {"id", "title"}, "users": {"id"}},
            make_registry(),
        )
        assert result.valid
        assert result.unlisted_tables == ["users"]

    def test_report_mentions_problems(self) -> None:
        result = compare_whitelist({"authors": {"id"}}, make_registry())
        report = result.format_report()
        assert "books" in report
        assert "name" in report
