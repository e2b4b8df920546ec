from dataclasses import dataclass


@dataclass
class PageResult:
    """A successfully fetched page."""

    html: str
    final_url: str
    status_code: int
    strategy: str = "http"
