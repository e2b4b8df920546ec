"""
Pytest configuration and fixtures for the SyncEngine test suite.
"""

import pytest


PRODUCT_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS products (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title VARCHAR(200) NOT NULL,
    price REAL,
    url VARCHAR(500)
)
"""


def listing_html(products, next_href=None):
    """Render a product listing page; products are (title, price, href) tuples."""
    items = "".join(
        f'<div class="product"><h2 class="title">{title}</h2>'
        f'<span class="price">{price}</span><a href="{href}">View</a></div>'
        for title, price, href in products
    )
    pager = f'<a class="next" href="{next_href}">Next</a>' if next_href else ""
    return f"<html><head><title>Shop</title></head><body>{items}{pager}</body></html>"


class StubPageFetcher:
    """
    In-memory stand-in for PageFetcher.

    ``pages`` maps URL to HTML, to an exception to raise, or to a callable
    taking the scroll count. ``browser_pages`` overrides ``pages`` for the
    browser strategy.
    """

    def __init__(self, pages, browser_pages=None):
        self.pages = pages
        self.browser_pages = browser_pages or {}
        self.calls = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    async def fetch(self, url, config, strategy=None, scroll_count=0):
        from syncengine.exceptions import HttpError
        from syncengine.fetchers.result import PageResult

        strategy = strategy or ("browser" if config.scraper_type == "browser" else "http")
        self.calls.append((url, strategy, scroll_count))

        content = self.pages.get(url)
        if strategy == "browser" and url in self.browser_pages:
            content = self.browser_pages[url]
        if content is None:
            raise HttpError(404, url=url)
        if isinstance(content, Exception):
            raise content
        if callable(content):
            content = content(scroll_count)
        return PageResult(html=content, final_url=url, status_code=200, strategy=strategy)


@pytest.fixture(scope="session")
def django_db_setup(django_db_blocker):
    """Configure the test database and run migrations."""
    from django.core.management import call_command

    with django_db_blocker.unblock():
        call_command("migrate", "--run-syncdb", verbosity=0)


@pytest.fixture(autouse=True)
def clear_cache():
    """Throttle counters and pacing slots live in the cache."""
    from django.core.cache import cache

    from syncengine.fetchers.pacing import reset_pacers

    cache.clear()
    reset_pacers()
    yield
    cache.clear()


@pytest.fixture
def api_client():
    """Create a test API client."""
    from rest_framework.test import APIClient

    return APIClient()


@pytest.fixture
def user(db):
    from django.contrib.auth.models import User

    return User.objects.create_user(username="operator", password="secret")


@pytest.fixture
def authenticated_client(api_client, user):
    """API client logged in as an operator."""
    api_client.force_authenticate(user=user)
    return api_client


@pytest.fixture
def stub_fetcher():
    """Return the StubPageFetcher class for building fetcher factories."""
    return StubPageFetcher


@pytest.fixture
def render_listing():
    return listing_html


@pytest.fixture
def staging_store(tmp_path):
    from syncengine.staging import StagingStore

    return StagingStore(directory=str(tmp_path / "staging"))


@pytest.fixture
def products_table(db):
    """Create the target table rows are committed into."""
    from django.db import connection

    with connection.cursor() as cursor:
        cursor.execute(PRODUCT_TABLE_SQL)
    yield "products"
    with connection.cursor() as cursor:
        cursor.execute("DROP TABLE IF EXISTS products")


@pytest.fixture
def data_source(db):
    from syncengine.models import DataSource

    return DataSource.objects.create(
        name="Warehouse",
        db_type="sqlite",
        connection_alias="default",
    )


@pytest.fixture
def web_source(db):
    from syncengine.models import WebSource

    return WebSource.objects.create(
        name="Example Shop",
        base_url="https://shop.example.com/products",
        scraper_type="http",
        request_delay_ms=0,
    )


@pytest.fixture
def assignment(data_source, web_source):
    """Draft assignment with title, price and url rules."""
    from syncengine.models import Assignment, ExtractionRule

    assignment = Assignment.objects.create(
        name="Products",
        data_source=data_source,
        web_source=web_source,
        target_table="products",
    )
    ExtractionRule.objects.create(
        assignment=assignment,
        target_column="title",
        selector=".product .title",
        is_required=True,
        sort_order=0,
    )
    ExtractionRule.objects.create(
        assignment=assignment,
        target_column="price",
        selector=".product .price",
        transform_type="number",
        data_type="number",
        is_required=True,
        sort_order=1,
    )
    ExtractionRule.objects.create(
        assignment=assignment,
        target_column="url",
        selector=".product a",
        attribute="href",
        sort_order=2,
    )
    return assignment


@pytest.fixture
def make_job(assignment):
    """Create a job in any status, holding the lease while in flight."""
    from syncengine.models import AssignmentLease, ExtractionJob

    def make(status="pending", **fields):
        job = ExtractionJob.objects.create(assignment=assignment, status=status, **fields)
        if status in ("pending", "running", "staging"):
            AssignmentLease.objects.create(assignment=assignment, job=job)
        return job

    return make
