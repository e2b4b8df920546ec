"""
Tests for website structure analysis and rule suggestions.
"""

import pytest

START_URL = "https://shop.example.com/products"

PRODUCTS = [
    ("Widget A", "$9.99", "/p/a"),
    ("Widget B", "$19.50", "/p/b"),
    ("Widget C", "$5", "/p/c"),
    ("Widget D", "$7.25", "/p/d"),
]


def products_schema():
    from syncengine.connectors import ColumnSchema, TableSchema

    return TableSchema(
        name="products",
        columns=[
            ColumnSchema("id", "AutoField", nullable=False, is_primary_key=True),
            ColumnSchema("title", "CharField", nullable=False, max_length=200),
            ColumnSchema("price", "FloatField"),
            ColumnSchema("url", "CharField", max_length=500),
        ],
    )


class TestInferDataType:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("$1,299.50", "number"),
            ("2024-02-03", "date"),
            ("March 4, 2024", "date"),
            ("yes", "boolean"),
            ('{"a": 1}', "json"),
            ("{not json}", "string"),
            ("Widget", "string"),
        ],
    )
    def test_infer(self, value, expected):
        from syncengine.extraction.structure import infer_data_type

        assert infer_data_type(value) == expected


class TestAnalyzeStructure:
    """Tests for single-page analysis."""

    def test_detects_product_listing(self, render_listing):
        from syncengine.extraction.structure import analyze_structure

        structure = analyze_structure(render_listing(PRODUCTS, "/products?page=2"), START_URL)

        assert structure["title"] == "Shop"
        best = structure["repeating_elements"][0]
        assert best["selector"] == ".product"
        assert best["count"] == 4
        fields = {f["name"]: f for f in best["fields"]}
        assert fields["price"]["selector"] == "span.price"
        assert fields["price"]["data_type"] == "number"
        assert fields["link_url"]["sample_value"] == "/p/a"

    def test_too_few_repeats_are_ignored(self, render_listing):
        from syncengine.extraction.structure import analyze_structure

        structure = analyze_structure(render_listing(PRODUCTS[:2]), START_URL)

        assert structure["repeating_elements"] == []

    def test_untitled_page_falls_back_to_h1(self):
        from syncengine.extraction.structure import analyze_structure

        structure = analyze_structure("<html><body><h1>Catalogue</h1></body></html>", START_URL)

        assert structure["title"] == "Catalogue"

    def test_forms_and_links(self):
        from syncengine.extraction.structure import analyze_structure

        html = """
        <html><body>
          <form action="/search" method="post"><input name="q"><select name="sort"></select></form>
          <a href="/about">About</a>
          <a href="https://other.example.org/">Partner</a>
          <a href="#top">Top</a>
        </body></html>
        """
        structure = analyze_structure(html, START_URL)

        assert structure["forms"] == [
            {"selector": "form:nth-of-type(1)", "action": "/search", "method": "POST", "fields": ["q", "sort"]}
        ]
        assert [(link["href"], link["type"]) for link in structure["links"]] == [
            ("/about", "internal"),
            ("https://other.example.org/", "external"),
        ]


class TestDetectPagination:
    def detect(self, html):
        from bs4 import BeautifulSoup

        from syncengine.extraction.structure import detect_pagination

        return detect_pagination(BeautifulSoup(html, "lxml"), START_URL)

    def test_query_param(self):
        assert self.detect('<a href="?page=2">2</a>') == {
            "type": "query_param",
            "param_name": "page",
            "start_page": 1,
        }

    def test_next_button(self):
        result = self.detect('<a class="next" href="/products/more">More</a>')

        assert result == {"type": "next_button", "selector": "a.next"}

    def test_next_text_with_class(self):
        result = self.detect('<a class="pager-forward" href="/products/more">Next</a>')

        assert result == {"type": "next_button", "selector": "a.pager-forward"}

    def test_path_segments(self):
        assert self.detect('<a href="/blog/page/2">2</a>') == {"type": "path", "start_page": 1}

    def test_no_pagination(self):
        assert self.detect('<a href="/about">About</a>') is None


class TestSuggestRules:
    @pytest.fixture
    def structure(self, render_listing):
        from syncengine.extraction.structure import analyze_structure

        return analyze_structure(render_listing(PRODUCTS), START_URL)

    def test_suggests_rule_per_matching_column(self, structure):
        from syncengine.extraction.structure import suggest_rules

        suggestions = {s["target_column"]: s for s in suggest_rules(structure, products_schema())}

        assert set(suggestions) == {"title", "price", "url"}
        assert suggestions["title"]["selector"] == ".product h2.title"
        assert suggestions["title"]["is_required"] is True
        assert suggestions["price"]["selector"] == ".product span.price"
        assert suggestions["price"]["transform_type"] == "number"
        assert suggestions["price"]["data_type"] == "number"
        assert suggestions["url"]["attribute"] == "href"

    def test_confidence_is_below_certainty(self, structure):
        from syncengine.extraction.structure import suggest_rules

        suggestions = suggest_rules(structure, products_schema())

        assert all(0 < s["confidence"] < 1 for s in suggestions)

    def test_unmatched_columns_get_no_suggestion(self, structure):
        from syncengine.connectors import ColumnSchema, TableSchema
        from syncengine.extraction.structure import suggest_rules

        table = TableSchema(name="inventory", columns=[ColumnSchema("warehouse_code", "CharField")])

        assert suggest_rules(structure, table) == []

    def test_element_index_out_of_range(self, structure):
        from syncengine.extraction.structure import suggest_rules

        assert suggest_rules(structure, products_schema(), element_index=9) == []


@pytest.mark.django_db
class TestSeedRules:
    def test_seeds_rules_for_new_columns(self, data_source, web_source, render_listing):
        from syncengine.extraction.structure import (
            analyze_structure,
            seed_rules_from_suggestions,
            suggest_rules,
        )
        from syncengine.models import Assignment

        assignment = Assignment.objects.create(
            name="Seeded", data_source=data_source, web_source=web_source, target_table="products"
        )
        suggestions = suggest_rules(analyze_structure(render_listing(PRODUCTS), START_URL), products_schema())

        created = seed_rules_from_suggestions(assignment, suggestions)

        assert sorted(rule.target_column for rule in created) == ["price", "title", "url"]
        assert assignment.rules.count() == 3
        assert seed_rules_from_suggestions(assignment, suggestions) == []

    def test_existing_rules_and_low_confidence_are_skipped(self, assignment):
        from syncengine.extraction.structure import seed_rules_from_suggestions

        suggestions = [
            {"target_column": "title", "selector": "h1", "confidence": 0.9},
            {"target_column": "sku", "selector": ".sku", "confidence": 0.3},
        ]

        assert seed_rules_from_suggestions(assignment, suggestions) == []

    def test_invalid_suggestion_is_rejected(self, data_source, web_source):
        from syncengine.exceptions import ConfigurationError
        from syncengine.extraction.structure import seed_rules_from_suggestions
        from syncengine.models import Assignment

        assignment = Assignment.objects.create(
            name="Broken", data_source=data_source, web_source=web_source, target_table="products"
        )
        suggestions = [
            {"target_column": "title", "selector": "div[", "confidence": 0.9},
        ]

        with pytest.raises(ConfigurationError, match="title"):
            seed_rules_from_suggestions(assignment, suggestions)

        assert assignment.rules.count() == 0


@pytest.mark.django_db
class TestAnalyzeWebSource:
    def test_caches_structure_and_detected_pagination(self, web_source, stub_fetcher, render_listing):
        from syncengine.extraction.structure import analyze_web_source
        from syncengine.models import WebSource

        fetcher = stub_fetcher({START_URL: render_listing(PRODUCTS, "/products?page=2")})

        structure = analyze_web_source(web_source, fetcher_factory=lambda: fetcher)

        web_source = WebSource.objects.get(pk=web_source.pk)
        assert web_source.structure_json == structure
        assert web_source.last_analyzed_at is not None
        assert web_source.pagination_type == "query_param"
        assert web_source.pagination_config == {"param_name": "page", "start_page": 1}

    def test_configured_pagination_is_kept(self, web_source, stub_fetcher, render_listing):
        from syncengine.extraction.structure import analyze_web_source
        from syncengine.models import WebSource

        web_source.pagination_type = "next_button"
        web_source.pagination_config = {"selector": "a.more"}
        web_source.save()
        fetcher = stub_fetcher({START_URL: render_listing(PRODUCTS, "/products?page=2")})

        analyze_web_source(web_source, fetcher_factory=lambda: fetcher)

        web_source = WebSource.objects.get(pk=web_source.pk)
        assert web_source.pagination_type == "next_button"
        assert web_source.pagination_config == {"selector": "a.more"}

    def test_fetch_failure_propagates(self, web_source, stub_fetcher):
        from syncengine.exceptions import HttpError
        from syncengine.extraction.structure import analyze_web_source

        with pytest.raises(HttpError):
            analyze_web_source(web_source, fetcher_factory=lambda: stub_fetcher({}))
