"""
Bursar fees/fines export.

Two steps. The charge step exports open patron accounts and remembers their
ids in the job's execution context; the refund step exports refund actions
for those accounts. The job's completion summary reports how many of each
were written.
"""

from itertools import chain
from typing import Any, Dict, Iterable, Iterator, List

from ..clients.feesfines import FeesFinesClient
from ..config import Settings
from ..models import ExportType, JobExecution, JobParameterNames
from ..notifier import CHARGE_FEESFINES_EXPORT_STEP, REFUND_FEESFINES_EXPORT_STEP
from ..pagination import OffsetPaginatedSource
from ..reference_cache import ReferenceDataCache
from ..runner import JobDefinition
from ..steps import ChunkedStep, CsvItemWriter
from ..storage import LocalFileStorage

ACCOUNTS_CONTEXT_KEY = "accounts"
DEFAULT_ACCOUNTS_QUERY = 'status.name=="Open"'
# Account ids per feefineactions query
ACCOUNT_ID_BATCH = 50

CHARGE_FIELDS = ["accountId", "patronId", "patronBarcode", "amount", "remaining", "feeFineType", "dateCreated"]
REFUND_FIELDS = ["actionId", "accountId", "patronId", "amount", "typeAction", "dateAction"]


def refund_query(account_ids: List[str]) -> str:
    ids = " or ".join(f'"{account_id}"' for account_id in account_ids)
    return f'accountId==({ids}) and typeAction=="Refunded*"'


def format_charge(account: Dict[str, Any], cache: ReferenceDataCache) -> Dict[str, Any]:
    user_id = account.get("userId")
    barcode = ""
    if user_id:
        barcode = (cache.resolve_by_id("users", user_id) or {}).get("barcode", "")
    return {
        "accountId": account.get("id", ""),
        "patronId": user_id or "",
        "patronBarcode": barcode,
        "amount": account.get("amount", 0),
        "remaining": account.get("remaining", 0),
        "feeFineType": account.get("feeFineType", ""),
        "dateCreated": (account.get("metadata") or {}).get("createdDate", ""),
    }


def format_refund(action: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "actionId": action.get("id", ""),
        "accountId": action.get("accountId", ""),
        "patronId": action.get("userId", ""),
        "amount": action.get("amountAction", 0),
        "typeAction": action.get("typeAction", ""),
        "dateAction": action.get("dateAction", ""),
    }


def _batches(values: List[str], size: int) -> Iterator[List[str]]:
    for i in range(0, len(values), size):
        yield values[i:i + size]


def build_bursar_job(
    feesfines: FeesFinesClient,
    cache: ReferenceDataCache,
    storage: LocalFileStorage,
    settings: Settings,
) -> JobDefinition:
    """
    Job parameters used:
        query: CQL filter for the accounts to charge (open accounts by default)
    """

    def accounts_reader(execution: JobExecution) -> Iterable[Dict[str, Any]]:
        query = execution.job_parameters.get_string(JobParameterNames.QUERY) or DEFAULT_ACCOUNTS_QUERY
        account_ids = execution.execution_context.setdefault(ACCOUNTS_CONTEXT_KEY, [])

        source = OffsetPaginatedSource(
            lambda offset, limit: feesfines.get_accounts(query, offset, limit),
            page_size=settings.chunk_size,
            stop_event=execution.stop_event,
            name="accounts",
        )
        for account in source:
            if account.get("id"):
                account_ids.append(account["id"])
            yield account

    def refunds_reader(execution: JobExecution) -> Iterable[Dict[str, Any]]:
        account_ids = execution.execution_context.get(ACCOUNTS_CONTEXT_KEY) or []
        if not account_ids:
            return iter(())
        sources = (
            OffsetPaginatedSource(
                lambda offset, limit, q=refund_query(batch): feesfines.get_feefineactions(q, offset, limit),
                page_size=settings.chunk_size,
                stop_event=execution.stop_event,
                name="feefineactions",
            )
            for batch in _batches(account_ids, ACCOUNT_ID_BATCH)
        )
        return chain.from_iterable(sources)

    charges = ChunkedStep(
        CHARGE_FEESFINES_EXPORT_STEP,
        accounts_reader,
        CsvItemWriter("-charges.csv", CHARGE_FIELDS, storage),
        processor=lambda account: format_charge(account, cache),
        chunk_size=settings.chunk_size,
        skip_limit=settings.skip_limit,
        item_key=lambda account: account.get("id") or "",
    )
    refunds = ChunkedStep(
        REFUND_FEESFINES_EXPORT_STEP,
        refunds_reader,
        CsvItemWriter("-refunds.csv", REFUND_FIELDS, storage),
        processor=format_refund,
        chunk_size=settings.chunk_size,
        skip_limit=settings.skip_limit,
        item_key=lambda action: action.get("id") or "",
    )
    return JobDefinition(ExportType.BURSAR_FEES_FINES.value, [charges, refunds])
