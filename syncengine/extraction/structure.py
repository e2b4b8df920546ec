"""
Website structure analysis.

Looks at one page of a web source and reports what an operator needs to
author rules: candidate repeating elements with the fields found inside
them, a pagination guess, forms and links. The result is cached on the
WebSource (``structure_json``) and is only used to suggest rules; the
extraction runner never reads it.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qsl, urljoin, urlparse

from asgiref.sync import async_to_sync
from bs4 import BeautifulSoup, Tag
from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone
from rapidfuzz import fuzz

from syncengine.connectors import TableSchema
from syncengine.exceptions import ConfigurationError
from syncengine.fetchers.config import ScraperConfig
from syncengine.fetchers.page_fetcher import PageFetcher
from syncengine.secrets import resolve_auth_config

logger = logging.getLogger(__name__)

# Repeating containers, most specific first
CONTAINER_SELECTORS = [
    "table tbody tr",
    "ul li",
    "ol li",
    ".item",
    ".card",
    ".product",
    ".listing",
    ".result",
    ".row",
    "[class*='item']",
    "[class*='card']",
    "[class*='product']",
    "[class*='listing']",
    "article",
]

MIN_REPEATS = 3
MAX_CANDIDATES = 5
MAX_LINKS = 50

# (name, selector, attribute)
FIELD_PATTERNS = [
    ("link_text", "a", "text"),
    ("link_url", "a", "href"),
    ("image", "img", "src"),
    ("image_alt", "img", "alt"),
    ("heading", "h1, h2, h3, h4, h5, h6", "text"),
    ("paragraph", "p", "text"),
    ("price", ".price, [class*='price']", "text"),
    ("title", ".title, [class*='title']", "text"),
    ("name", ".name, [class*='name']", "text"),
    ("description", ".description, [class*='desc']", "text"),
    ("date", ".date, [class*='date'], time", "text"),
    ("text", "span", "text"),
]

FIELD_ALIASES = {
    "title": ["title", "name", "heading", "subject"],
    "heading": ["title", "name", "heading", "subject"],
    "name": ["name", "title", "label", "full_name"],
    "price": ["price", "cost", "amount", "value"],
    "description": ["description", "desc", "content", "body", "text"],
    "paragraph": ["description", "content", "body", "summary"],
    "image": ["image", "img", "photo", "picture", "thumbnail", "image_url"],
    "link_url": ["url", "link", "href", "source_url"],
    "date": ["date", "created_at", "updated_at", "published_at", "timestamp"],
}

NUMERIC_TYPES = ("int", "decimal", "float", "numeric", "real", "double")

PAGE_PARAMS = ("page", "p", "offset", "start")
NEXT_SELECTORS = ["a[rel='next']", "a.next", ".next a", "[class*='next'] a", "li.next a"]
NEXT_TEXTS = ("next", "→", "»", "›")
PATH_PAGE_RE = re.compile(r"/(?:page|p)/\d+")

NUMBER_RE = re.compile(r"^-?\d+\.?\d*$")
DATE_RES = [
    re.compile(r"^\d{4}-\d{2}-\d{2}"),
    re.compile(r"^\d{2}/\d{2}/\d{4}"),
    re.compile(r"^\w+ \d{1,2}, \d{4}"),
]


def infer_data_type(value: str) -> str:
    """Guess the data type of a sample value."""
    if NUMBER_RE.match(value.replace(",", "").replace("$", "")):
        return "number"
    if any(pattern.match(value) for pattern in DATE_RES):
        return "date"
    if value.lower() in ("true", "false", "yes", "no"):
        return "boolean"
    if (value.startswith("{") and value.endswith("}")) or (
        value.startswith("[") and value.endswith("]")
    ):
        try:
            json.loads(value)
            return "json"
        except ValueError:
            pass
    return "string"


def _concrete_selector(tag: Tag) -> str:
    """tag name plus its first class, e.g. ``span.price``."""
    classes = tag.get("class") or []
    if classes:
        return f"{tag.name}.{classes[0]}"
    return tag.name


def detect_fields(element: Tag) -> List[Dict[str, Any]]:
    fields = []
    for name, selector, attribute in FIELD_PATTERNS:
        found = element.select_one(selector)
        if found is None:
            continue
        if attribute == "text":
            value = found.get_text(" ", strip=True)
        else:
            value = found.get(attribute) or ""
        if not value or len(value) >= 1000:
            continue
        fields.append(
            {
                "name": name,
                "selector": _concrete_selector(found),
                "attribute": attribute,
                "sample_value": value[:100],
                "data_type": infer_data_type(value),
            }
        )
    return fields


def detect_repeating_elements(soup: BeautifulSoup) -> List[Dict[str, Any]]:
    """Containers matched at least MIN_REPEATS times, best scored first."""
    candidates = []
    for selector in CONTAINER_SELECTORS:
        elements = soup.select(selector)
        if len(elements) < MIN_REPEATS:
            continue
        fields = detect_fields(elements[0])
        if not fields:
            continue
        candidates.append(
            {
                "selector": selector,
                "count": len(elements),
                "sample_html": str(elements[0])[:500],
                "fields": fields,
            }
        )

    candidates.sort(key=lambda c: len(c["fields"]) * c["count"], reverse=True)
    return candidates[:MAX_CANDIDATES]


def detect_pagination(soup: BeautifulSoup, url: str) -> Optional[Dict[str, Any]]:
    """
    Guess the pagination of a page.

    Tried in order: a page query parameter, a next link, a /page/N path.
    """
    for link in soup.select("a[href]"):
        href = urljoin(url, link["href"])
        for key, _ in parse_qsl(urlparse(href).query):
            if key.lower() in PAGE_PARAMS:
                return {"type": "query_param", "param_name": key, "start_page": 1}

    for selector in NEXT_SELECTORS:
        if soup.select_one(selector) is not None:
            return {"type": "next_button", "selector": selector}

    for link in soup.select("a[href]"):
        if link.get_text(strip=True).lower() in NEXT_TEXTS:
            classes = link.get("class") or []
            if classes:
                return {"type": "next_button", "selector": f"a.{classes[0]}"}

    for link in soup.select("a[href]"):
        if PATH_PAGE_RE.search(link["href"]):
            return {"type": "path", "start_page": 1}

    return None


def detect_forms(soup: BeautifulSoup) -> List[Dict[str, Any]]:
    forms = []
    for index, form in enumerate(soup.find_all("form")):
        forms.append(
            {
                "selector": f"form:nth-of-type({index + 1})",
                "action": form.get("action", ""),
                "method": (form.get("method") or "GET").upper(),
                "fields": [
                    field["name"]
                    for field in form.find_all(["input", "select", "textarea"])
                    if field.get("name")
                ],
            }
        )
    return forms


def detect_links(soup: BeautifulSoup, base_url: str) -> List[Dict[str, str]]:
    links = []
    seen = set()
    base_host = urlparse(base_url).hostname

    for link in soup.select("a[href]"):
        href = link["href"].strip()
        if not href or href in seen or href.startswith(("#", "javascript:")):
            continue
        seen.add(href)

        full_url = urljoin(base_url, href)
        if re.search(r"page|p=|offset|start", href, re.IGNORECASE):
            link_type = "pagination"
        elif urlparse(full_url).hostname != base_host:
            link_type = "external"
        else:
            link_type = "internal"

        links.append(
            {"text": link.get_text(" ", strip=True)[:100], "href": href, "type": link_type}
        )
        if len(links) >= MAX_LINKS:
            break
    return links


def analyze_structure(html: str, url: str) -> Dict[str, Any]:
    """Analyze one page. Returns a JSON-serialisable structure dict."""
    soup = BeautifulSoup(html, "lxml")

    title = ""
    if soup.title is not None:
        title = soup.title.get_text(strip=True)
    if not title and soup.h1 is not None:
        title = soup.h1.get_text(strip=True)

    return {
        "url": url,
        "title": title or "Untitled",
        "repeating_elements": detect_repeating_elements(soup),
        "pagination": detect_pagination(soup, url),
        "forms": detect_forms(soup),
        "links": detect_links(soup, url),
    }


def analyze_web_source(web_source, url: Optional[str] = None, fetcher_factory=None) -> Dict:
    """
    Fetch and analyze a web source, caching the result on it.

    A detected pagination is stored only when the source has none configured.

    Raises:
        FetchFailure: the page could not be fetched
    """
    url = url or web_source.base_url
    config = ScraperConfig.from_web_source(web_source, resolve_auth_config(web_source))
    fetcher_factory = fetcher_factory or PageFetcher

    async def fetch():
        async with fetcher_factory() as fetcher:
            return await fetcher.fetch(url, config)

    page = async_to_sync(fetch)()
    structure = analyze_structure(page.html, page.final_url)

    web_source.structure_json = structure
    web_source.last_analyzed_at = timezone.now()
    update_fields = ["structure_json", "last_analyzed_at"]

    detected = structure["pagination"]
    if detected and web_source.pagination_type == "none":
        web_source.pagination_type = detected["type"]
        web_source.pagination_config = {k: v for k, v in detected.items() if k != "type"}
        update_fields += ["pagination_type", "pagination_config"]

    web_source.save(update_fields=update_fields + ["updated_at"])
    logger.info(
        f"Analyzed {web_source.name}: {len(structure['repeating_elements'])} repeating "
        f"elements, pagination={detected['type'] if detected else None}"
    )
    return structure


def _transform_for(data_type: str, column_type: str) -> str:
    column_type = column_type.lower()
    if any(t in column_type for t in NUMERIC_TYPES):
        return "number"
    if data_type in ("string", "date") and ("date" in column_type or "time" in column_type):
        return "date"
    if data_type == "number" and "char" in column_type:
        return "none"
    return "trim"


def _column_data_type(column_type: str) -> str:
    column_type = column_type.lower()
    if any(t in column_type for t in NUMERIC_TYPES):
        return "number"
    if "bool" in column_type:
        return "boolean"
    if "date" in column_type or "time" in column_type:
        return "date"
    if "json" in column_type:
        return "json"
    return "string"


def _name_score(field_name: str, column_name: str) -> float:
    column_name = column_name.lower()
    aliases = FIELD_ALIASES.get(field_name, [field_name])
    scores = [
        max(fuzz.ratio(alias, column_name), fuzz.partial_ratio(alias, column_name))
        for alias in aliases
    ]
    return max(scores) / 100.0


def suggest_rules(
    structure: Dict[str, Any],
    table: TableSchema,
    element_index: int = 0,
    min_score: float = 0.8,
) -> List[Dict[str, Any]]:
    """
    Suggest one rule per table column from an analyzed structure.

    Each suggestion carries a ``confidence`` in 0..1. Columns nothing
    matches well enough get no suggestion.
    """
    elements = structure.get("repeating_elements") or []
    if element_index >= len(elements):
        return []
    element = elements[element_index]

    suggestions = []
    for column in table.columns:
        if column.is_primary_key:
            continue
        best = None
        best_score = 0.0
        for detected in element["fields"]:
            score = _name_score(detected["name"], column.name)
            if score > best_score:
                best, best_score = detected, score
        if best is None or best_score < min_score:
            continue

        # Name matches are never certain
        confidence = round(best_score * 0.75, 2)
        suggestions.append(
            {
                "target_column": column.name,
                "selector": f"{element['selector']} {best['selector']}",
                "selector_type": "css",
                "attribute": best["attribute"],
                "transform_type": _transform_for(best["data_type"], column.data_type),
                "data_type": _column_data_type(column.data_type),
                "is_required": column.is_required,
                "sample_value": best["sample_value"],
                "confidence": confidence,
            }
        )

    suggestions.sort(key=lambda s: s["confidence"], reverse=True)
    return suggestions


def seed_rules_from_suggestions(assignment, suggestions, min_confidence: float = 0.5):
    """
    Create extraction rules from suggestions.

    Suggestions below ``min_confidence`` and columns that already have an
    active rule are skipped. Returns the created rules.
    """
    from syncengine.models import ExtractionRule

    existing = set(
        assignment.rules.filter(is_active=True).values_list("target_column", flat=True)
    )
    next_order = assignment.rules.count()
    created = []

    with transaction.atomic():
        for suggestion in suggestions:
            column = suggestion["target_column"]
            if suggestion.get("confidence", 0) < min_confidence or column in existing:
                continue
            rule = ExtractionRule(
                assignment=assignment,
                target_column=column,
                selector=suggestion["selector"],
                selector_type=suggestion.get("selector_type", "css"),
                attribute=suggestion.get("attribute", "text"),
                transform_type=suggestion.get("transform_type", "none"),
                transform_config=suggestion.get("transform_config", {}),
                data_type=suggestion.get("data_type", "string"),
                is_required=suggestion.get("is_required", False),
                sort_order=next_order,
            )
            try:
                rule.clean()
            except ValidationError as e:
                raise ConfigurationError(f"Suggested rule for '{column}' is invalid: {e}")
            rule.save()
            existing.add(column)
            created.append(rule)
            next_order += 1

    logger.info(f"Seeded {len(created)} rules for assignment {assignment.pk}")
    return created
