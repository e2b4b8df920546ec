"""
Value transforms applied to a rule's raw extracted string.

Each transform kind is a frozen dataclass; ``parse_transform`` turns the
stored ``(transform_type, transform_config)`` pair into one of them and
rejects malformed configuration when the rule is loaded, not when the
first row is evaluated.

Custom transforms are looked up in an allow-list registry populated with
``register_transform``.
"""

import json
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional, Union

from bs4 import BeautifulSoup
from django.utils.text import slugify

from syncengine.exceptions import TransformConfigError, TransformFailure


# Formats tried, in order, when a date transform has no input_format
FALLBACK_DATE_FORMATS = [
    "%Y-%m-%d",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%d/%m/%Y",
    "%m/%d/%Y",
    "%d.%m.%Y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d %B %Y",
    "%d %b %Y",
]

_REGEX_FLAGS = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "x": re.VERBOSE,
}

_TIME_DIRECTIVES = ("%H", "%I", "%M", "%S", "%f", "%p", "%z")


def parse_datetime_value(value: str, input_format: Optional[str] = None) -> datetime:
    """
    Parse a date string.

    With an explicit format only that format is accepted; otherwise ISO-8601
    and a short list of common formats are tried.

    Raises:
        ValueError: if the value matches none of the formats
    """
    text = value.strip()
    if input_format:
        return datetime.strptime(text, input_format)

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass

    for fmt in FALLBACK_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    raise ValueError(f"Unrecognised date '{text}'")


def parse_number_value(
    value: str,
    decimal_separator: str = ".",
    thousands_separator: str = ",",
) -> Union[int, float]:
    """
    Parse a localised number, dropping currency symbols and other text.

    "$1,299.50" -> 1299.5, "1.299,50 EUR" with decimal_separator="," -> 1299.5

    Raises:
        ValueError: if no number can be read
    """
    allowed = set("0123456789-") | {decimal_separator, thousands_separator}
    cleaned = "".join(ch for ch in value if ch in allowed)
    if thousands_separator:
        cleaned = cleaned.replace(thousands_separator, "")
    if decimal_separator != ".":
        cleaned = cleaned.replace(decimal_separator, ".")

    if not cleaned or cleaned in ("-", "."):
        raise ValueError(f"No number in '{value}'")

    try:
        number = Decimal(cleaned)
    except InvalidOperation:
        raise ValueError(f"No number in '{value}'")

    if number == number.to_integral_value() and "." not in cleaned:
        return int(number)
    return float(number)


# ------------------------------------------------------------------
# Custom transform registry
# ------------------------------------------------------------------

_CUSTOM_TRANSFORMS: Dict[str, Callable[..., Any]] = {}


def register_transform(name: str):
    """Decorator adding a function to the custom transform allow-list."""

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        _CUSTOM_TRANSFORMS[name] = func
        return func

    return decorator


def get_custom_transform(name: str) -> Callable[..., Any]:
    try:
        return _CUSTOM_TRANSFORMS[name]
    except KeyError:
        raise TransformConfigError(
            f"Unknown custom transform '{name}'. "
            f"Available: {', '.join(sorted(_CUSTOM_TRANSFORMS))}"
        )


def available_custom_transforms():
    return sorted(_CUSTOM_TRANSFORMS)


@register_transform("lowercase")
def _lowercase(value: str) -> str:
    return value.lower()


@register_transform("uppercase")
def _uppercase(value: str) -> str:
    return value.upper()


@register_transform("slugify")
def _slugify(value: str) -> str:
    return slugify(value)


@register_transform("strip_html")
def _strip_html(value: str) -> str:
    return BeautifulSoup(value, "lxml").get_text(" ", strip=True)


@register_transform("collapse_whitespace")
def _collapse_whitespace(value: str) -> str:
    return " ".join(value.split())


@register_transform("prefix")
def _prefix(value: str, text: str = "") -> str:
    return f"{text}{value}"


# ------------------------------------------------------------------
# Transform kinds
# ------------------------------------------------------------------


@dataclass(frozen=True)
class TrimTransform:
    chars: Optional[str] = None

    kind = "trim"

    def apply(self, value: str, column: str) -> str:
        return value.strip(self.chars) if self.chars else value.strip()


@dataclass(frozen=True)
class RegexTransform:
    pattern: str
    group: Union[int, str] = 0
    flags: str = ""
    replacement: Optional[str] = None

    kind = "regex"

    def compiled(self):
        flag_bits = 0
        for flag in self.flags:
            flag_bits |= _REGEX_FLAGS.get(flag, 0)
        return re.compile(self.pattern, flag_bits)

    def apply(self, value: str, column: str) -> str:
        regex = self.compiled()
        match = regex.search(value)
        if match is None:
            raise TransformFailure(column, f"Pattern '{self.pattern}' did not match", value)

        if self.replacement is not None:
            return regex.sub(self.replacement, value)

        try:
            extracted = match.group(self.group)
        except IndexError:
            raise TransformFailure(column, f"Pattern has no group {self.group!r}", value)
        if extracted is None:
            raise TransformFailure(column, f"Group {self.group!r} did not participate", value)
        return extracted


@dataclass(frozen=True)
class DateTransform:
    input_format: Optional[str] = None
    output: str = "auto"  # "date", "datetime", or "auto" (by input_format)

    kind = "date"

    def apply(self, value: str, column: str) -> str:
        try:
            parsed = parse_datetime_value(value, self.input_format)
        except ValueError as e:
            raise TransformFailure(column, str(e), value)

        output = self.output
        if output == "auto":
            has_time = (
                any(d in self.input_format for d in _TIME_DIRECTIVES)
                if self.input_format
                else bool(parsed.hour or parsed.minute or parsed.second or parsed.tzinfo)
            )
            output = "datetime" if has_time else "date"

        if output == "date":
            return parsed.date().isoformat()
        return parsed.isoformat()


@dataclass(frozen=True)
class NumberTransform:
    decimal_separator: str = "."
    thousands_separator: str = ","

    kind = "number"

    def apply(self, value: str, column: str) -> Union[int, float]:
        try:
            return parse_number_value(
                value, self.decimal_separator, self.thousands_separator
            )
        except ValueError as e:
            raise TransformFailure(column, str(e), value)


@dataclass(frozen=True)
class JsonTransform:
    path: Optional[str] = None

    kind = "json"

    def apply(self, value: str, column: str) -> Any:
        try:
            data = json.loads(value)
        except (TypeError, ValueError) as e:
            raise TransformFailure(column, f"Invalid JSON: {e}", value)

        if not self.path:
            return data

        for key in self.path.split("."):
            if isinstance(data, list) and key.lstrip("-").isdigit():
                index = int(key)
                if -len(data) <= index < len(data):
                    data = data[index]
                    continue
            elif isinstance(data, dict) and key in data:
                data = data[key]
                continue
            raise TransformFailure(column, f"JSON path '{self.path}' not found", value)
        return data


@dataclass(frozen=True)
class CustomTransform:
    name: str
    options: tuple = ()

    kind = "custom"

    def apply(self, value: str, column: str) -> Any:
        func = get_custom_transform(self.name)
        try:
            return func(value, **dict(self.options))
        except TransformFailure:
            raise
        except Exception as e:
            raise TransformFailure(column, f"Custom transform '{self.name}' failed: {e}", value)


Transform = Union[
    TrimTransform,
    RegexTransform,
    DateTransform,
    NumberTransform,
    JsonTransform,
    CustomTransform,
]

TRANSFORM_KINDS = ("trim", "regex", "date", "number", "json", "custom")


def _load_config(config) -> dict:
    if config in (None, ""):
        return {}
    if isinstance(config, str):
        try:
            config = json.loads(config)
        except ValueError as e:
            raise TransformConfigError(f"Transform config is not valid JSON: {e}")
    if not isinstance(config, dict):
        raise TransformConfigError("Transform config must be an object")
    return config


def parse_transform(kind: Optional[str], config=None) -> Optional[Transform]:
    """
    Build a transform from its stored type and configuration.

    Args:
        kind: One of TRANSFORM_KINDS, or empty/None for no transform
        config: Dict (or JSON string) of transform options

    Returns:
        A transform instance, or None when kind is empty

    Raises:
        TransformConfigError: on unknown kinds, bad options, invalid regex
            patterns, or unknown custom transform names
    """
    if not kind or kind == "none":
        return None

    options = _load_config(config)

    if kind == "trim":
        return TrimTransform(chars=options.get("chars"))

    if kind == "regex":
        pattern = options.get("pattern")
        if not pattern:
            raise TransformConfigError("Regex transform requires 'pattern'")
        group = options.get("group", 0)
        if not isinstance(group, (int, str)):
            raise TransformConfigError("Regex 'group' must be an index or a name")
        transform = RegexTransform(
            pattern=pattern,
            group=group,
            flags=options.get("flags", "") or "",
            replacement=options.get("replacement"),
        )
        try:
            transform.compiled()
        except re.error as e:
            raise TransformConfigError(f"Invalid regex pattern '{pattern}': {e}")
        return transform

    if kind == "date":
        output = options.get("output", "auto")
        if output not in ("auto", "date", "datetime"):
            raise TransformConfigError(f"Unknown date output '{output}'")
        return DateTransform(
            input_format=options.get("input_format") or options.get("format"),
            output=output,
        )

    if kind == "number":
        decimal_separator = options.get("decimal_separator", ".")
        thousands_separator = options.get("thousands_separator", ",")
        if decimal_separator == thousands_separator:
            raise TransformConfigError(
                "Number transform separators must differ"
            )
        return NumberTransform(
            decimal_separator=decimal_separator,
            thousands_separator=thousands_separator,
        )

    if kind == "json":
        return JsonTransform(path=options.get("path"))

    if kind == "custom":
        name = options.get("name")
        if not name:
            raise TransformConfigError("Custom transform requires 'name'")
        get_custom_transform(name)
        extra = options.get("options", {}) or {}
        if not isinstance(extra, dict):
            raise TransformConfigError("Custom transform 'options' must be an object")
        return CustomTransform(name=name, options=tuple(sorted(extra.items())))

    raise TransformConfigError(
        f"Unknown transform type '{kind}'. Expected one of {', '.join(TRANSFORM_KINDS)}"
    )
