from typing import Optional

from .common import OkapiClient
from ..pagination import Page


class AuditClient:
    """Circulation audit log service (offset/limit paged)."""

    SERVICE = "audit"

    def __init__(self, http: OkapiClient):
        self.http = http

    def get_circulation_audit_logs(self, query: str, offset: int, limit: int, lang: Optional[str] = None) -> Page:
        params = {"query": query, "offset": offset, "limit": limit}
        if lang:
            params["lang"] = lang
        data = self.http.get_json("audit-data/circulation/logs", self.SERVICE, params=params) or {}
        return Page(
            records=data.get("logRecords") or [],
            total_records=data.get("totalRecords"),
        )
