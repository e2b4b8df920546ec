"""
Repeating-element location.

Rows come from the elements matched by an item selector. The selector is
taken from the assignment when set; otherwise it is inferred from the
leading compound selector every CSS rule shares (".product .title" and
".product .price" share ".product"). Rule selectors are rewritten relative
to the item. With no item selector the whole document is a single row.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from bs4 import BeautifulSoup
from bs4.element import Tag

from syncengine.extraction.rules import RuleSpec, resolve_raw

logger = logging.getLogger(__name__)

COMBINATORS = (">", "+", "~")


def split_selector(selector: str) -> List[str]:
    """
    Split a CSS selector into compound selectors and combinators.

    Whitespace inside brackets, parentheses and quotes is preserved:
    'ul > li[data-x="a b"] .price' -> ['ul', '>', 'li[data-x="a b"]', '.price']
    """
    tokens: List[str] = []
    current = ""
    depth = 0
    quote = None

    for ch in selector.strip():
        if quote:
            current += ch
            if ch == quote:
                quote = None
            continue
        if ch in ("'", '"'):
            quote = ch
            current += ch
            continue
        if ch in "[(":
            depth += 1
        elif ch in "])":
            depth -= 1

        if depth == 0 and (ch.isspace() or ch in COMBINATORS):
            if current:
                tokens.append(current)
                current = ""
            if ch in COMBINATORS:
                tokens.append(ch)
            continue
        current += ch

    if current:
        tokens.append(current)
    return tokens


def _relative(tokens: Sequence[str]) -> str:
    if not tokens:
        return ""
    if tokens[0] in COMBINATORS:
        return ":scope " + " ".join(tokens)
    return " ".join(tokens)


def infer_item_selector(rules: Sequence[RuleSpec]) -> Optional[str]:
    """Return the leading compound shared by all CSS rules, if there is one."""
    css_rules = [r for r in rules if r.selector_type == "css" and r.selector]
    if not css_rules:
        return None

    leading = None
    for rule in css_rules:
        if "," in rule.selector:
            return None
        tokens = split_selector(rule.selector)
        if len(tokens) < 2 or tokens[0] in COMBINATORS:
            return None
        if leading is None:
            leading = tokens[0]
        elif tokens[0] != leading:
            return None
    return leading


def relativize(rule: RuleSpec, item_selector: str) -> RuleSpec:
    """Strip a leading item selector from a CSS rule's selector."""
    if rule.selector_type != "css" or not rule.selector:
        return rule
    tokens = split_selector(rule.selector)
    if tokens and tokens[0] == item_selector.strip():
        return rule.with_selector(_relative(tokens[1:]))
    return rule


@dataclass
class ItemLocator:
    """Finds the repeating elements of a page and holds item-relative rules."""

    item_selector: Optional[str]
    rules: List[RuleSpec]

    @classmethod
    def build(
        cls, rules: Sequence[RuleSpec], item_selector: Optional[str] = None
    ) -> "ItemLocator":
        selector = (item_selector or "").strip() or infer_item_selector(rules)
        if not selector:
            return cls(item_selector=None, rules=list(rules))

        logger.debug(f"Item selector: {selector}")
        return cls(
            item_selector=selector,
            rules=[relativize(rule, selector) for rule in rules],
        )

    def locate(self, soup: BeautifulSoup, base_url: str = "") -> List[Tag]:
        """
        Return the repeating elements of a parsed page.

        In whole-document mode the document counts as one item only when
        at least one rule finds a node in it.
        """
        if self.item_selector:
            return soup.select(self.item_selector)

        for rule in self.rules:
            if rule.selector and resolve_raw(soup, rule, base_url) is not None:
                return [soup]
        return []
