"""
Circulation log export.

Reads audit log records page by page (fixed 100-record stride by default),
adds the service point name from the reference cache and writes a CSV.
"""

from typing import Any, Dict

from ..clients.audit import AuditClient
from ..config import Settings
from ..models import ExportType, JobExecution, JobParameterNames
from ..pagination import OffsetPaginatedSource
from ..reference_cache import ReferenceDataCache
from ..runner import JobDefinition
from ..steps import ChunkedStep, CsvItemWriter
from ..storage import LocalFileStorage

STEP_NAME = "exportCirculationLogStep"
DEFAULT_QUERY = "cql.allRecords=1"

FIELDS = [
    "userBarcode",
    "items",
    "object",
    "action",
    "date",
    "servicePointId",
    "servicePointName",
    "source",
    "description",
]

ERROR_FIELDS = ["identifier", "error"]


def format_log_record(record: Dict[str, Any], cache: ReferenceDataCache) -> Dict[str, Any]:
    """Flatten one audit log record into a CSV row."""
    service_point_id = record.get("servicePointId")
    service_point_name = ""
    if service_point_id:
        service_point = cache.resolve_by_id("service_points", service_point_id) or {}
        service_point_name = service_point.get("name", "")

    items = record.get("items") or []
    return {
        "userBarcode": record.get("userBarcode", ""),
        "items": ",".join(i.get("itemBarcode", "") for i in items if i.get("itemBarcode")),
        "object": record.get("object", ""),
        "action": record.get("action", ""),
        "date": record.get("date", ""),
        "servicePointId": service_point_id or "",
        "servicePointName": service_point_name,
        "source": record.get("source", ""),
        "description": record.get("description", ""),
    }


def build_circulation_log_job(
    audit: AuditClient,
    cache: ReferenceDataCache,
    storage: LocalFileStorage,
    settings: Settings,
) -> JobDefinition:
    """
    Job parameters used:
        query: CQL filter for the audit log (all records by default)
        offset: first record to read
        limit: maximum records to export
    """

    def reader(execution: JobExecution) -> OffsetPaginatedSource:
        params = execution.job_parameters
        query = params.get_string(JobParameterNames.QUERY) or DEFAULT_QUERY
        limit = params.get("limit")

        def fetch(offset: int, page_size: int):
            return audit.get_circulation_audit_logs(query, offset, page_size)

        return OffsetPaginatedSource(
            fetch,
            page_size=settings.circulation_log_page_size,
            offset=int(params.get("offset", 0) or 0),
            max_item_count=int(limit) if limit else None,
            stop_event=execution.stop_event,
            name="circulation-log",
        )

    step = ChunkedStep(
        STEP_NAME,
        reader,
        CsvItemWriter(".csv", FIELDS, storage),
        processor=lambda record: format_log_record(record, cache),
        chunk_size=settings.chunk_size,
        skip_limit=settings.skip_limit,
        error_writer=CsvItemWriter("-errors.csv", ERROR_FIELDS, storage, lazy=True, upload_on_failure=True),
        item_key=lambda record: record.get("id") or "",
    )
    return JobDefinition(ExportType.CIRCULATION_LOG.value, [step])
