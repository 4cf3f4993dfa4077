"""
Authority control export: heading updates made to authority records and how
many linked bibliographic records each one touched.

Stats are read newest first. The entity-links service returns a "next" date
with each page; the reader keeps requesting from that date until the service
stops sending one.
"""

from datetime import date
from typing import Any, Dict

from ..clients.entity_links import UPDATE_HEADING, EntitiesLinksStatsClient
from ..config import Settings
from ..errors import MalformedJobRequest
from ..models import ExportType, JobExecution, JobParameterNames
from ..pagination import ContinuationPaginatedSource
from ..reference_cache import ReferenceDataCache
from ..runner import JobDefinition
from ..steps import ChunkedStep, CsvItemWriter
from ..storage import LocalFileStorage

STEP_NAME = "exportAuthorityControlStep"

FIELDS = [
    "lastUpdated",
    "originalHeading",
    "newHeading",
    "identifier",
    "originalHeadingType",
    "newHeadingType",
    "authoritySourceFileName",
    "linkedBibUpdateCount",
    "updater",
]


def start_of_day_utc(value: Any) -> str:
    """2024-03-01 -> 2024-03-01T00:00Z, the form the stats endpoint expects."""
    if isinstance(value, str):
        try:
            value = date.fromisoformat(value[:10])
        except ValueError as e:
            raise MalformedJobRequest(f"Invalid date: {value!r}") from e
    if not isinstance(value, date):
        raise MalformedJobRequest(f"Invalid date: {value!r}")
    return f"{value.isoformat()}T00:00Z"


def updater_name(stat: Dict[str, Any], cache: ReferenceDataCache) -> str:
    metadata = stat.get("metadata") or {}
    last = metadata.get("startedByUserLastName")
    first = metadata.get("startedByUserFirstName")
    if not last and not first:
        user_id = metadata.get("startedByUserId")
        if not user_id:
            return ""
        personal = (cache.resolve_by_id("users", user_id) or {}).get("personal") or {}
        last = personal.get("lastName")
        first = personal.get("firstName")
    return ", ".join(part for part in (last, first) if part)


def format_stat(stat: Dict[str, Any], cache: ReferenceDataCache) -> Dict[str, Any]:
    metadata = stat.get("metadata") or {}
    return {
        "lastUpdated": metadata.get("completedAt") or metadata.get("startedAt") or "",
        "originalHeading": stat.get("headingOld", ""),
        "newHeading": stat.get("headingNew", ""),
        "identifier": stat.get("naturalIdNew", ""),
        "originalHeadingType": stat.get("headingTypeOld", ""),
        "newHeadingType": stat.get("headingTypeNew", ""),
        "authoritySourceFileName": stat.get("sourceFileNew", ""),
        "linkedBibUpdateCount": stat.get("lbTotal", 0),
        "updater": updater_name(stat, cache),
    }


def build_authority_control_job(
    stats: EntitiesLinksStatsClient,
    cache: ReferenceDataCache,
    storage: LocalFileStorage,
    settings: Settings,
) -> JobDefinition:
    """
    Job parameters used:
        fromDate, toDate: ISO dates bounding the export
    """

    def reader(execution: JobExecution) -> ContinuationPaginatedSource:
        params = execution.job_parameters
        from_date = params.get(JobParameterNames.FROM_DATE)
        to_date = params.get(JobParameterNames.TO_DATE)
        if not from_date or not to_date:
            raise MalformedJobRequest("Authority control export needs fromDate and toDate")

        def fetch(limit: int, range_start: str, cursor: str):
            return stats.get_authority_stats(limit, UPDATE_HEADING, range_start, cursor)

        return ContinuationPaginatedSource(
            fetch,
            page_size=settings.authority_stats_chunk_size,
            range_start=start_of_day_utc(from_date),
            range_end=start_of_day_utc(to_date),
            stop_event=execution.stop_event,
            name="authority-stats",
        )

    step = ChunkedStep(
        STEP_NAME,
        reader,
        CsvItemWriter(".csv", FIELDS, storage),
        processor=lambda stat: format_stat(stat, cache),
        chunk_size=settings.chunk_size,
        skip_limit=settings.skip_limit,
        error_writer=CsvItemWriter("-errors.csv", ["identifier", "error"], storage, lazy=True, upload_on_failure=True),
        item_key=lambda stat: stat.get("id") or stat.get("naturalIdNew") or "",
    )
    return JobDefinition(ExportType.AUTHORITY_CONTROL.value, [step])
