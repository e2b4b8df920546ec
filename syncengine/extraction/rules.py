"""
Rule evaluation: turn one item fragment plus one extraction rule into a
typed column value.

Resolution order for a rule:
    1. locate the node (CSS via BeautifulSoup, XPath via lxml)
    2. read the configured attribute
    3. apply the transform
    4. coerce to the declared data type
    5. check the validation pattern

Evaluation is pure: the same fragment and rule always yield the same value
or the same failure.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urljoin

import lxml.html
from bs4 import BeautifulSoup
from bs4.element import Tag
from lxml import etree

from syncengine.exceptions import (
    ConfigurationError,
    MissingRequired,
    TransformFailure,
    TypeCoercionFailure,
    ValidationFailure,
)
from syncengine.extraction.transforms import (
    Transform,
    parse_datetime_value,
    parse_number_value,
    parse_transform,
)

logger = logging.getLogger(__name__)

URL_ATTRIBUTES = ("href", "src")

TRUE_VALUES = {"true", "yes", "1", "on", "y"}
FALSE_VALUES = {"false", "no", "0", "off", "n"}


@dataclass(frozen=True)
class RuleSpec:
    """Loaded, validated form of an ExtractionRule."""

    column: str
    selector: str
    selector_type: str = "css"
    attribute: str = "text"
    transform: Optional[Transform] = None
    default_value: Optional[str] = None
    data_type: str = "string"
    is_required: bool = False
    validation_regex: Optional[str] = None
    sort_order: int = 0
    _validation_pattern: Any = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        if self.selector_type not in ("css", "xpath"):
            raise ConfigurationError(
                f"Rule '{self.column}': unknown selector type '{self.selector_type}'"
            )
        if self.data_type not in ("string", "number", "date", "boolean", "json"):
            raise ConfigurationError(
                f"Rule '{self.column}': unknown data type '{self.data_type}'"
            )
        if self.selector:
            validate_selector(self.selector, self.selector_type, f"Rule '{self.column}'")
        if self.validation_regex:
            try:
                pattern = re.compile(self.validation_regex)
            except re.error as e:
                raise ConfigurationError(
                    f"Rule '{self.column}': invalid validation pattern: {e}"
                )
            object.__setattr__(self, "_validation_pattern", pattern)

    @classmethod
    def from_model(cls, rule) -> "RuleSpec":
        """Build from an ExtractionRule instance, validating its transform."""
        return cls(
            column=rule.target_column,
            selector=rule.selector or "",
            selector_type=rule.selector_type,
            attribute=rule.attribute or "text",
            transform=parse_transform(rule.transform_type, rule.transform_config),
            default_value=rule.default_value if rule.default_value != "" else None,
            data_type=rule.data_type,
            is_required=rule.is_required,
            validation_regex=rule.validation_regex or None,
            sort_order=rule.sort_order,
        )

    def with_selector(self, selector: str) -> "RuleSpec":
        return RuleSpec(
            column=self.column,
            selector=selector,
            selector_type=self.selector_type,
            attribute=self.attribute,
            transform=self.transform,
            default_value=self.default_value,
            data_type=self.data_type,
            is_required=self.is_required,
            validation_regex=self.validation_regex,
            sort_order=self.sort_order,
        )


def validate_selector(selector: str, selector_type: str, owner: str = "Selector") -> None:
    """Raise ConfigurationError if the selector cannot be compiled."""
    if selector_type == "xpath":
        try:
            etree.XPath(selector)
        except etree.XPathError as e:
            raise ConfigurationError(f"{owner}: invalid XPath '{selector}': {e}")
        return

    try:
        BeautifulSoup("<html></html>", "lxml").select(selector)
    except Exception as e:
        raise ConfigurationError(f"{owner}: invalid CSS selector '{selector}': {e}")


# ------------------------------------------------------------------
# Node resolution
# ------------------------------------------------------------------


def _collapse(text: str) -> str:
    return " ".join(text.split())


def _read_tag(tag: Tag, attribute: str, base_url: str) -> Optional[str]:
    if attribute == "text":
        return _collapse(tag.get_text())
    if attribute == "html":
        return tag.decode_contents()

    value = tag.get(attribute)
    if value is None:
        return None
    if isinstance(value, list):
        value = " ".join(value)
    if attribute in URL_ATTRIBUTES and value.strip():
        return urljoin(base_url, value.strip())
    return value


def _read_lxml(node: Any, attribute: str, base_url: str) -> Optional[str]:
    # XPath may return elements, attribute/text strings or scalars
    if isinstance(node, etree._Element):
        if attribute == "text":
            return _collapse(node.text_content())
        if attribute == "html":
            inner = node.text or ""
            inner += "".join(
                etree.tostring(child, encoding="unicode", method="html")
                for child in node
            )
            return inner
        value = node.get(attribute)
        if value is not None and attribute in URL_ATTRIBUTES and value.strip():
            return urljoin(base_url, value.strip())
        return value

    if isinstance(node, bool):
        return "true" if node else "false"
    if isinstance(node, float):
        return str(int(node)) if node.is_integer() else str(node)

    text = str(node)
    if attribute in URL_ATTRIBUTES and text.strip():
        return urljoin(base_url, text.strip())
    return _collapse(text) if attribute == "text" else text


def resolve_raw(fragment: Tag, rule: RuleSpec, base_url: str) -> Optional[str]:
    """Locate the rule's node within the fragment and read its attribute."""
    if rule.selector_type == "xpath":
        markup = str(fragment)
        if isinstance(fragment, BeautifulSoup):
            root = lxml.html.document_fromstring(markup or "<html></html>")
        else:
            root = lxml.html.fragment_fromstring(markup, create_parent=False)
        result = root.xpath(rule.selector) if rule.selector else [root]
        if isinstance(result, list):
            if not result:
                return None
            return _read_lxml(result[0], rule.attribute, base_url)
        return _read_lxml(result, rule.attribute, base_url)

    node = fragment.select_one(rule.selector) if rule.selector else fragment
    if node is None:
        return None
    return _read_tag(node, rule.attribute, base_url)


# ------------------------------------------------------------------
# Type coercion
# ------------------------------------------------------------------


def coerce_value(value: Any, data_type: str, column: str) -> Any:
    """Convert a (possibly transformed) value to the declared data type."""
    if value is None:
        return None

    if data_type == "string":
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return value if isinstance(value, str) else str(value)

    if data_type == "number":
        if isinstance(value, bool):
            raise TypeCoercionFailure(column, "Boolean is not a number", value)
        if isinstance(value, (int, float)):
            return value
        try:
            return parse_number_value(str(value))
        except ValueError as e:
            raise TypeCoercionFailure(column, str(e), value)

    if data_type == "boolean":
        if isinstance(value, bool):
            return value
        lowered = str(value).strip().lower()
        if lowered in TRUE_VALUES:
            return True
        if lowered in FALSE_VALUES:
            return False
        raise TypeCoercionFailure(column, f"Not a boolean: '{value}'", value)

    if data_type == "date":
        try:
            parsed = parse_datetime_value(str(value))
        except ValueError as e:
            raise TypeCoercionFailure(column, str(e), value)
        if parsed.hour or parsed.minute or parsed.second or parsed.tzinfo:
            return parsed.isoformat()
        return parsed.date().isoformat()

    if data_type == "json":
        if not isinstance(value, str):
            return value
        try:
            return json.loads(value)
        except ValueError as e:
            raise TypeCoercionFailure(column, f"Invalid JSON: {e}", value)

    raise TypeCoercionFailure(column, f"Unknown data type '{data_type}'", value)


def _string_form(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


# ------------------------------------------------------------------
# Evaluation
# ------------------------------------------------------------------


def _finish(value: Any, rule: RuleSpec) -> Any:
    coerced = coerce_value(value, rule.data_type, rule.column)
    if rule._validation_pattern is not None and coerced is not None:
        if not rule._validation_pattern.search(_string_form(coerced)):
            raise ValidationFailure(
                rule.column,
                f"Value does not match '{rule.validation_regex}'",
                coerced,
            )
    return coerced


def _fallback(rule: RuleSpec) -> Any:
    if rule.default_value is not None:
        return _finish(rule.default_value, rule)
    if rule.is_required:
        raise MissingRequired(rule.column, "No value found for required column")
    return None


def evaluate_rule(fragment: Tag, rule: RuleSpec, base_url: str) -> Any:
    """
    Evaluate one rule against one item fragment.

    Args:
        fragment: The repeating element (or the whole document)
        rule: Loaded rule
        base_url: URL of the page, used to absolutise href/src values

    Returns:
        The typed value, or None for an optional rule with no value

    Raises:
        MissingRequired, TransformFailure, TypeCoercionFailure, ValidationFailure
    """
    raw = resolve_raw(fragment, rule, base_url)
    if raw is None or not raw.strip():
        return _fallback(rule)

    value: Any = raw
    if rule.transform is not None:
        try:
            value = rule.transform.apply(raw, rule.column)
        except TransformFailure:
            if rule.default_value is None:
                raise
            return _finish(rule.default_value, rule)

    if isinstance(value, str) and not value.strip():
        return _fallback(rule)

    return _finish(value, rule)


def evaluate_row(fragment: Tag, rules: Iterable[RuleSpec], base_url: str) -> Dict[str, Any]:
    """
    Evaluate every rule against one item.

    Raises the first FieldFailure; a row with any failing rule is not kept.
    """
    return {rule.column: evaluate_rule(fragment, rule, base_url) for rule in rules}


def load_rules(rules) -> List[RuleSpec]:
    """Load active ExtractionRule models in sort order."""
    return [
        RuleSpec.from_model(rule)
        for rule in sorted(rules, key=lambda r: (r.sort_order, r.target_column))
        if rule.is_active
    ]
