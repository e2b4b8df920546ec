"""
Tests for rule evaluation.

A rule locates a node (CSS or XPath), reads an attribute, transforms,
coerces to its data type and validates. Evaluation is pure and each
failure names the column it belongs to.
"""

import pytest
from bs4 import BeautifulSoup


ITEM_HTML = """
<div class="product" data-sku="A-1">
  <h2 class="title">  Widget
     Deluxe </h2>
  <span class="price">$1,299.50</span>
  <span class="stock">yes</span>
  <a class="link" href="/p/widget">View</a>
  <img src="images/widget.png">
  <div class="desc"><p>Great <b>value</b></p></div>
  <code class="meta">{"rating": 4.5}</code>
</div>
"""

BASE_URL = "https://shop.example.com/catalog/"


@pytest.fixture
def item():
    soup = BeautifulSoup(ITEM_HTML, "lxml")
    return soup.select_one(".product")


def rule(**kwargs):
    from syncengine.extraction.rules import RuleSpec

    kwargs.setdefault("column", "value")
    return RuleSpec(**kwargs)


class TestRuleSpec:
    """Loading and validating rule definitions."""

    def test_invalid_css_selector_is_a_configuration_error(self):
        from syncengine.exceptions import ConfigurationError

        with pytest.raises(ConfigurationError, match="invalid CSS selector"):
            rule(selector="div[[")

    def test_invalid_xpath_is_a_configuration_error(self):
        from syncengine.exceptions import ConfigurationError

        with pytest.raises(ConfigurationError, match="invalid XPath"):
            rule(selector="//div[", selector_type="xpath")

    def test_invalid_validation_regex_is_rejected(self):
        from syncengine.exceptions import ConfigurationError

        with pytest.raises(ConfigurationError, match="invalid validation pattern"):
            rule(selector=".price", validation_regex="(")

    def test_unknown_data_type_is_rejected(self):
        from syncengine.exceptions import ConfigurationError

        with pytest.raises(ConfigurationError, match="unknown data type"):
            rule(selector=".price", data_type="money")

    def test_load_rules_orders_and_skips_inactive(self, assignment):
        """load_rules keeps active rules in sort order."""
        from syncengine.extraction.rules import load_rules
        from syncengine.models import ExtractionRule

        ExtractionRule.objects.create(
            assignment=assignment,
            target_column="legacy",
            selector=".old",
            is_active=False,
            sort_order=-1,
        )

        rules = load_rules(assignment.rules.all())

        assert [r.column for r in rules] == ["title", "price", "url"]
        assert rules[1].transform is not None


class TestResolve:
    """Locating nodes and reading attributes."""

    def test_text_is_whitespace_collapsed(self, item):
        from syncengine.extraction.rules import evaluate_rule

        assert evaluate_rule(item, rule(selector=".title"), BASE_URL) == "Widget Deluxe"

    def test_href_and_src_are_absolutised(self, item):
        from syncengine.extraction.rules import evaluate_rule

        href = evaluate_rule(item, rule(selector="a.link", attribute="href"), BASE_URL)
        src = evaluate_rule(item, rule(selector="img", attribute="src"), BASE_URL)

        assert href == "https://shop.example.com/p/widget"
        assert src == "https://shop.example.com/catalog/images/widget.png"

    def test_html_attribute_returns_inner_markup(self, item):
        from syncengine.extraction.rules import evaluate_rule

        value = evaluate_rule(item, rule(selector=".desc", attribute="html"), BASE_URL)

        assert value == "<p>Great <b>value</b></p>"

    def test_empty_selector_reads_the_item_itself(self, item):
        from syncengine.extraction.rules import evaluate_rule

        assert evaluate_rule(item, rule(selector="", attribute="data-sku"), BASE_URL) == "A-1"

    def test_xpath_element_and_attribute(self, item):
        from syncengine.extraction.rules import evaluate_rule

        title = evaluate_rule(
            item, rule(selector=".//h2", selector_type="xpath"), BASE_URL
        )
        href = evaluate_rule(
            item, rule(selector=".//a/@href", selector_type="xpath", attribute="href"), BASE_URL
        )

        assert title == "Widget Deluxe"
        assert href == "https://shop.example.com/p/widget"

    def test_xpath_scalar_result(self, item):
        from syncengine.extraction.rules import evaluate_rule

        count = evaluate_rule(
            item,
            rule(selector="count(.//span)", selector_type="xpath", data_type="number"),
            BASE_URL,
        )

        assert count == 2


class TestEvaluateRule:
    """Transform, coercion, defaults and validation."""

    def test_number_transform_then_coercion(self, item):
        from syncengine.extraction.rules import evaluate_rule
        from syncengine.extraction.transforms import parse_transform

        price = rule(
            selector=".price", transform=parse_transform("number"), data_type="number"
        )

        assert evaluate_rule(item, price, BASE_URL) == 1299.5

    def test_number_coercion_without_transform(self, item):
        from syncengine.extraction.rules import evaluate_rule

        assert evaluate_rule(item, rule(selector=".price", data_type="number"), BASE_URL) == 1299.5

    def test_boolean_coercion(self, item):
        from syncengine.extraction.rules import evaluate_rule

        assert evaluate_rule(item, rule(selector=".stock", data_type="boolean"), BASE_URL) is True

    def test_json_coercion(self, item):
        from syncengine.extraction.rules import evaluate_rule

        value = evaluate_rule(item, rule(selector="code.meta", data_type="json"), BASE_URL)

        assert value == {"rating": 4.5}

    def test_uncoercible_value_fails_with_column(self, item):
        from syncengine.exceptions import TypeCoercionFailure
        from syncengine.extraction.rules import evaluate_rule

        with pytest.raises(TypeCoercionFailure) as exc_info:
            evaluate_rule(item, rule(column="in_stock", selector=".title", data_type="boolean"), BASE_URL)

        assert exc_info.value.column == "in_stock"

    def test_missing_optional_is_none(self, item):
        from syncengine.extraction.rules import evaluate_rule

        assert evaluate_rule(item, rule(selector=".rating"), BASE_URL) is None

    def test_missing_required_fails(self, item):
        from syncengine.exceptions import MissingRequired
        from syncengine.extraction.rules import evaluate_rule

        with pytest.raises(MissingRequired):
            evaluate_rule(item, rule(selector=".rating", is_required=True), BASE_URL)

    def test_default_value_fills_missing_and_is_coerced(self, item):
        """A default replaces a missing value, even for a required rule."""
        from syncengine.extraction.rules import evaluate_rule

        value = evaluate_rule(
            item,
            rule(selector=".rating", default_value="0", data_type="number", is_required=True),
            BASE_URL,
        )

        assert value == 0

    def test_default_value_replaces_failed_transform(self, item):
        from syncengine.extraction.rules import evaluate_rule
        from syncengine.extraction.transforms import parse_transform

        value = evaluate_rule(
            item,
            rule(
                selector=".title",
                transform=parse_transform("regex", {"pattern": r"\d+"}),
                default_value="n/a",
            ),
            BASE_URL,
        )

        assert value == "n/a"

    def test_validation_pattern(self, item):
        from syncengine.exceptions import ValidationFailure
        from syncengine.extraction.rules import evaluate_rule

        ok = rule(selector=".title", validation_regex=r"^Widget")
        bad = rule(selector=".title", validation_regex=r"^\d+$")

        assert evaluate_rule(item, ok, BASE_URL) == "Widget Deluxe"
        with pytest.raises(ValidationFailure):
            evaluate_rule(item, bad, BASE_URL)

    def test_evaluation_is_deterministic(self, item):
        """The same fragment and rule always produce the same value."""
        from syncengine.extraction.rules import evaluate_rule

        price = rule(selector=".price", data_type="number")

        assert evaluate_rule(item, price, BASE_URL) == evaluate_rule(item, price, BASE_URL)

    def test_evaluate_row_raises_first_failure(self, item):
        from syncengine.exceptions import MissingRequired
        from syncengine.extraction.rules import evaluate_row

        rules = [
            rule(column="title", selector=".title"),
            rule(column="rating", selector=".rating", is_required=True),
        ]

        with pytest.raises(MissingRequired) as exc_info:
            evaluate_row(item, rules, BASE_URL)

        assert exc_info.value.to_dict()["column"] == "rating"
