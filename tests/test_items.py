"""
Tests for repeating-element location and item selector inference.
"""

from bs4 import BeautifulSoup


def css_rule(column, selector, **kwargs):
    from syncengine.extraction.rules import RuleSpec

    return RuleSpec(column=column, selector=selector, **kwargs)


class TestSplitSelector:
    def test_splits_descendants_and_combinators(self):
        from syncengine.extraction.items import split_selector

        assert split_selector("ul > li.item .price") == ["ul", ">", "li.item", ".price"]

    def test_keeps_whitespace_inside_attribute_values(self):
        from syncengine.extraction.items import split_selector

        assert split_selector('li[data-x="a b"] span') == ['li[data-x="a b"]', "span"]


class TestInferItemSelector:
    """The shared leading compound selector becomes the item selector."""

    def test_common_leading_compound(self):
        from syncengine.extraction.items import infer_item_selector

        rules = [css_rule("title", ".product .title"), css_rule("price", ".product .price")]

        assert infer_item_selector(rules) == ".product"

    def test_different_leading_compounds(self):
        from syncengine.extraction.items import infer_item_selector

        rules = [css_rule("title", ".product .title"), css_rule("price", ".offer .price")]

        assert infer_item_selector(rules) is None

    def test_single_token_selector_means_whole_document(self):
        from syncengine.extraction.items import infer_item_selector

        assert infer_item_selector([css_rule("title", "h1")]) is None

    def test_xpath_rules_are_ignored(self):
        from syncengine.extraction.items import infer_item_selector

        rules = [
            css_rule("title", ".product .title"),
            css_rule("sku", "//span[@class='sku']", selector_type="xpath"),
        ]

        assert infer_item_selector(rules) == ".product"


class TestItemLocator:
    HTML = """
    <html><body>
      <h1>Catalog</h1>
      <div class="product"><span class="title">A</span></div>
      <div class="product"><span class="title">B</span></div>
      <div class="product"><span class="title">C</span></div>
    </body></html>
    """

    def test_rules_are_rewritten_relative_to_the_item(self):
        from syncengine.extraction.items import ItemLocator

        locator = ItemLocator.build([css_rule("title", ".product .title")])

        assert locator.item_selector == ".product"
        assert locator.rules[0].selector == ".title"

    def test_child_combinator_becomes_scope_relative(self):
        from syncengine.extraction.items import ItemLocator

        locator = ItemLocator.build([css_rule("title", ".product > .title")])

        assert locator.rules[0].selector == ":scope > .title"

    def test_explicit_item_selector_wins(self):
        from syncengine.extraction.items import ItemLocator

        locator = ItemLocator.build([css_rule("title", "span.title")], item_selector=".product")
        soup = BeautifulSoup(self.HTML, "lxml")

        assert len(locator.locate(soup)) == 3

    def test_whole_document_is_one_item(self):
        from syncengine.extraction.items import ItemLocator

        locator = ItemLocator.build([css_rule("heading", "h1")])
        soup = BeautifulSoup(self.HTML, "lxml")

        assert locator.item_selector is None
        assert locator.locate(soup) == [soup]

    def test_whole_document_without_matches_has_no_items(self):
        from syncengine.extraction.items import ItemLocator

        locator = ItemLocator.build([css_rule("heading", "h3")])
        soup = BeautifulSoup(self.HTML, "lxml")

        assert locator.locate(soup) == []
