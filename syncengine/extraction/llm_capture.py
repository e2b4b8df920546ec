"""
LLM analyzer / capture service client.

The analyzer inspects a sample page and proposes a capture configuration:
a system prompt, a JSON schema for the records to return, and a mapping
from JSON fields to target columns. Extraction runs replay that
configuration on every page and receive JSON records back.

Features:
- Async httpx client with configurable timeout
- Bearer token authentication
- Failures surface as CaptureServiceError
- generate_capture_config stores a fresh configuration on an assignment
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from asgiref.sync import async_to_sync
from django.conf import settings

from syncengine.exceptions import ConfigurationError, MissingRequired, SyncEngineError
from syncengine.extraction.rules import coerce_value

logger = logging.getLogger(__name__)

# Pages are truncated before upload to keep prompts bounded
MAX_CONTENT_CHARS = 200_000


class CaptureServiceError(SyncEngineError):
    """The analyzer service failed or returned an unusable response."""


@dataclass(frozen=True)
class ColumnMapping:
    column_name: str
    json_field: str
    description: str = ""
    data_type: str = "string"
    is_required: bool = False


@dataclass(frozen=True)
class CaptureConfig:
    system_prompt: str
    json_schema: Dict[str, Any]
    column_mappings: List[ColumnMapping] = field(default_factory=list)
    model: Optional[str] = None
    temperature: float = 0.0

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "CaptureConfig":
        if not data:
            raise ConfigurationError("LLM extraction requires a capture configuration")

        def pick(*keys, default=None):
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return default

        raw_mappings = pick("column_mappings", "columnMappings", default=[])
        if not raw_mappings:
            raise ConfigurationError("Capture configuration has no column mappings")

        mappings = []
        for raw in raw_mappings:
            column = raw.get("column_name") or raw.get("columnName")
            json_field = raw.get("json_field") or raw.get("jsonField")
            if not column or not json_field:
                raise ConfigurationError(f"Incomplete column mapping: {raw}")
            mappings.append(
                ColumnMapping(
                    column_name=column,
                    json_field=json_field,
                    description=raw.get("description", ""),
                    data_type=raw.get("data_type") or raw.get("dataType") or "string",
                    is_required=bool(raw.get("is_required", raw.get("isRequired", False))),
                )
            )

        return cls(
            system_prompt=pick("system_prompt", "systemPrompt", default=""),
            json_schema=pick("json_schema", "jsonSchema", default={}),
            column_mappings=mappings,
            model=pick("model"),
            temperature=float(pick("temperature", default=0.0)),
        )

    def to_dict(self) -> dict:
        return {
            "system_prompt": self.system_prompt,
            "json_schema": self.json_schema,
            "column_mappings": [
                {
                    "column_name": m.column_name,
                    "json_field": m.json_field,
                    "description": m.description,
                    "data_type": m.data_type,
                    "is_required": m.is_required,
                }
                for m in self.column_mappings
            ],
            "model": self.model,
            "temperature": self.temperature,
        }

    @property
    def columns(self) -> List[str]:
        return [m.column_name for m in self.column_mappings]

    def map_record(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Turn one JSON record from the service into a row.

        Raises:
            MissingRequired, TypeCoercionFailure
        """
        row = {}
        for mapping in self.column_mappings:
            value = record.get(mapping.json_field)
            if value in (None, ""):
                if mapping.is_required:
                    raise MissingRequired(mapping.column_name, "Missing from captured record")
                row[mapping.column_name] = None
                continue
            row[mapping.column_name] = coerce_value(
                value, mapping.data_type, mapping.column_name
            )
        return row


class CaptureClient:
    """Async HTTP client for the page analyzer service."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (
            base_url or getattr(settings, "SYNCENGINE_ANALYZER_URL", "http://localhost:8001")
        ).rstrip("/")
        self.api_key = api_key or getattr(settings, "SYNCENGINE_ANALYZER_TOKEN", "")
        self.timeout = timeout or getattr(settings, "SYNCENGINE_ANALYZER_TIMEOUT", 120)
        self.transport = transport

    def _get_headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _post(self, path: str, payload: dict) -> dict:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, json=payload, headers=self._get_headers())
        except httpx.TimeoutException as e:
            logger.error(f"Analyzer timeout calling {path}: {e}")
            raise CaptureServiceError(f"Analyzer timeout after {self.timeout}s")
        except httpx.TransportError as e:
            logger.error(f"Analyzer connection error calling {path}: {e}")
            raise CaptureServiceError(f"Analyzer connection error: {e}")

        if response.status_code >= 400:
            logger.error(f"Analyzer returned {response.status_code} for {path}")
            raise CaptureServiceError(
                f"Analyzer returned HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            return response.json()
        except ValueError:
            raise CaptureServiceError("Analyzer returned invalid JSON")

    async def analyze_page(self, html: str, target_columns: List[dict], url: str = "") -> dict:
        """Ask the analyzer what the page contains relative to the target columns."""
        return await self._post(
            "/api/v1/analyze/",
            {
                "content": html[:MAX_CONTENT_CHARS],
                "source_url": url,
                "target_columns": target_columns,
            },
        )

    async def create_capture_config(self, analysis: dict, html: str) -> CaptureConfig:
        data = await self._post(
            "/api/v1/capture-config/",
            {"analysis": analysis, "content": html[:MAX_CONTENT_CHARS]},
        )
        return CaptureConfig.from_dict(data)

    async def extract(self, html: str, config: CaptureConfig, url: str = "") -> List[dict]:
        """Replay a capture configuration on one page; returns JSON records."""
        data = await self._post(
            "/api/v1/extract/",
            {
                "content": html[:MAX_CONTENT_CHARS],
                "source_url": url,
                "capture_config": config.to_dict(),
            },
        )
        records = data.get("records", data.get("data", [])) if isinstance(data, dict) else data
        if not isinstance(records, list):
            raise CaptureServiceError("Analyzer extract response has no record list")
        return [record for record in records if isinstance(record, dict)]


def generate_capture_config(
    assignment,
    url: Optional[str] = None,
    fetcher_factory=None,
    client: Optional[CaptureClient] = None,
) -> CaptureConfig:
    """
    Fetch a sample page, have the analyzer describe it against the target
    table, and store the resulting capture configuration on the assignment.

    Raises:
        FetchFailure: the sample page could not be fetched
        CaptureServiceError: the analyzer failed
        ConfigurationError: the target table does not exist
    """
    from syncengine.connectors import get_connector
    from syncengine.fetchers.config import ScraperConfig
    from syncengine.fetchers.page_fetcher import PageFetcher
    from syncengine.secrets import resolve_auth_config

    web_source = assignment.web_source
    table = get_connector(assignment.data_source).describe_table(
        assignment.target_schema, assignment.target_table
    )
    if table is None:
        raise ConfigurationError(f"Target table '{assignment.qualified_table}' not found")

    target_columns = [
        {
            "name": column.name,
            "data_type": column.data_type,
            "required": column.is_required,
        }
        for column in table.columns
        if not column.is_primary_key
    ]

    url = url or assignment.get_start_url()
    config = ScraperConfig.from_web_source(web_source, resolve_auth_config(web_source))
    fetcher_factory = fetcher_factory or PageFetcher
    client = client or CaptureClient()

    async def build():
        async with fetcher_factory() as fetcher:
            page = await fetcher.fetch(url, config)
        analysis = await client.analyze_page(page.html, target_columns, url=page.final_url)
        return await client.create_capture_config(analysis, page.html)

    capture = async_to_sync(build)()

    assignment.llm_capture_config = capture.to_dict()
    assignment.save(update_fields=["llm_capture_config", "updated_at"])
    logger.info(
        f"Stored capture configuration for {assignment.name} "
        f"({len(capture.column_mappings)} column mappings)"
    )
    return capture
