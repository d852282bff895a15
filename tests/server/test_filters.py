"""Tests for the filter/sort engine and pagination."""

from __future__ import annotations

import pytest

from fakehub.errors import ValidationError
from fakehub.services.filters import (
    AnyOf,
    Compare,
    Contains,
    Equals,
    FilterSpec,
    parse_comparison,
    parse_qualifiers,
    sort_items,
)
from fakehub.services.pagination import paginate, window

REPOS = [
    {"name": "web-app", "language": "TypeScript", "stargazers_count": 1200, "owner": {"login": "acme"},
     "topics": ["frontend", "react"], "updated_at": "2024-03-01T00:00:00Z"},
    {"name": "api-server", "language": "Go", "stargazers_count": 300, "owner": {"login": "acme"},
     "topics": ["backend"], "updated_at": "2024-05-01T00:00:00Z"},
    {"name": "dotfiles", "language": "Shell", "stargazers_count": 12, "owner": {"login": "alice"},
     "topics": [], "updated_at": "2024-01-01T00:00:00Z"},
    {"name": "notes", "language": None, "stargazers_count": 300, "owner": {"login": "alice"},
     "topics": [], "updated_at": None},
]


class TestPredicates:
    def test_equals_case_insensitive(self):
        assert [r["name"] for r in FilterSpec().add(Equals("language", "go")).apply(REPOS)] == ["api-server"]

    def test_equals_dotted_path(self):
        names = [r["name"] for r in FilterSpec().add(Equals("owner.login", "alice")).apply(REPOS)]
        assert names == ["dotfiles", "notes"]

    def test_any_of_list_field(self):
        spec = FilterSpec().add(AnyOf("topics", frozenset(["react", "backend"])))
        assert [r["name"] for r in spec.apply(REPOS)] == ["web-app", "api-server"]

    def test_compare_skips_non_numbers(self):
        items = REPOS + [{"name": "broken", "stargazers_count": "many"}]
        spec = FilterSpec().add(Compare("stargazers_count", ">", 100))
        assert [r["name"] for r in spec.apply(items)] == ["web-app", "api-server", "notes"]

    def test_contains_any_field(self):
        spec = FilterSpec().add(Contains(("name", "language"), "SHELL"))
        assert [r["name"] for r in spec.apply(REPOS)] == ["dotfiles"]

    def test_predicates_combine_with_and_in_any_order(self):
        a = FilterSpec().add(Equals("owner.login", "acme")).add(parse_comparison("stargazers_count", ">500"))
        b = FilterSpec().add(parse_comparison("stargazers_count", ">500")).add(Equals("owner.login", "acme"))
        assert a.apply(REPOS) == b.apply(REPOS)
        assert [r["name"] for r in a.apply(REPOS)] == ["web-app"]


class TestParsing:
    @pytest.mark.parametrize("expr,expected", [
        (">500", ["web-app"]),
        ("<=12", ["dotfiles"]),
        ("300", ["api-server", "notes"]),
        ("10..300", ["api-server", "dotfiles", "notes"]),
        ("stars:>=300", ["web-app", "api-server", "notes"]),
    ])
    def test_comparisons(self, expr, expected):
        field_name = "stars" if expr.startswith("stars:") else "stargazers_count"
        predicates = parse_comparison(field_name, expr)
        if field_name == "stars":
            predicates = [Compare("stargazers_count", p.op, p.value) for p in predicates]
        assert [r["name"] for r in FilterSpec().add(predicates).apply(REPOS)] == expected

    def test_bad_comparison_names_param(self):
        with pytest.raises(ValidationError) as exc:
            parse_comparison("stargazers_count", "lots", param="stars")
        assert "stars" in exc.value.errors

    def test_empty_range(self):
        with pytest.raises(ValidationError):
            parse_comparison("stargazers_count", "50..10")

    def test_qualifiers_split_from_text(self):
        text, qualifiers = parse_qualifiers('crash "login page" language:Go label:bug label:p1')
        assert text == "crash login page"
        assert qualifiers == {"language": ["Go"], "label": ["bug", "p1"]}

    def test_empty_query(self):
        assert parse_qualifiers(None) == ("", {})


class TestSorting:
    def test_stable_descending(self):
        result = sort_items(REPOS, "stars", "desc", {"stars": "stargazers_count"})
        # api-server and notes tie at 300 and keep their input order
        assert [r["name"] for r in result] == ["web-app", "api-server", "notes", "dotfiles"]

    def test_stable_ascending(self):
        result = sort_items(REPOS, "stars", "asc", {"stars": "stargazers_count"})
        assert [r["name"] for r in result] == ["dotfiles", "api-server", "notes", "web-app"]

    def test_missing_values_last_in_both_directions(self):
        for order in ("asc", "desc"):
            result = sort_items(REPOS, "updated", order, {"updated": "updated_at"})
            assert result[-1]["name"] == "notes"

    def test_case_insensitive_text_sort(self):
        items = [{"name": "beta"}, {"name": "Alpha"}, {"name": "gamma"}]
        assert [i["name"] for i in sort_items(items, "name", "asc")] == ["Alpha", "beta", "gamma"]

    def test_no_key_keeps_order(self):
        assert sort_items(REPOS, None) == REPOS

    def test_unknown_sort_key(self):
        with pytest.raises(ValidationError) as exc:
            sort_items(REPOS, "popularity", "desc", {"stars": "stargazers_count"})
        assert "sort" in exc.value.errors

    def test_bad_order(self):
        with pytest.raises(ValidationError):
            sort_items(REPOS, "name", "sideways")


class TestPagination:
    def test_page_slice(self):
        page = paginate(list(range(45)), page=2, per_page=20)
        assert page.items == list(range(20, 40))
        assert page.to_dict("numbers") == {
            "numbers": list(range(20, 40)), "total": 45, "page": 2, "per_page": 20, "total_pages": 3,
        }

    def test_page_past_end_is_empty(self):
        page = paginate(list(range(5)), page=3, per_page=10)
        assert page.items == []
        assert page.total == 5

    def test_empty_collection(self):
        assert paginate([], 1, 10).total_pages == 0

    def test_invalid_page_and_per_page_reported_together(self):
        with pytest.raises(ValidationError) as exc:
            paginate([1, 2, 3], page=0, per_page=1000)
        assert set(exc.value.errors) == {"page", "per_page"}

    def test_window(self):
        w = window(list(range(10)), limit=3, offset=8)
        assert w.to_dict("runs") == {"runs": [8, 9], "total_count": 10, "limit": 3, "offset": 8}

    def test_window_negative_offset(self):
        with pytest.raises(ValidationError):
            window([1], limit=1, offset=-1)

    @pytest.mark.parametrize("per_page", [1, 2, 3, 7, 45])
    def test_pages_join_to_the_whole(self, per_page):
        items = sort_items(REPOS * 11, "stars", "desc", {"stars": "stargazers_count"})
        first = paginate(items, 1, per_page)
        joined = list(first.items)
        for n in range(2, first.total_pages + 1):
            page = paginate(items, n, per_page)
            assert page.total == first.total
            joined.extend(page.items)
        assert joined == items
        assert paginate(items, first.total_pages + 1, per_page).items == []
