from .common import OkapiClient
from ..pagination import Page


class FeesFinesClient:
    """Patron accounts (fees/fines) and their actions, offset/limit paged."""

    SERVICE = "feesfines"

    def __init__(self, http: OkapiClient):
        self.http = http

    def get_accounts(self, query: str, offset: int, limit: int) -> Page:
        params = {"query": query, "offset": offset, "limit": limit}
        data = self.http.get_json("accounts", self.SERVICE, params=params) or {}
        return Page(records=data.get("accounts") or [], total_records=data.get("totalRecords"))

    def get_feefineactions(self, query: str, offset: int, limit: int) -> Page:
        params = {"query": query, "offset": offset, "limit": limit}
        data = self.http.get_json("feefineactions", self.SERVICE, params=params) or {}
        return Page(records=data.get("feefineactions") or [], total_records=data.get("totalRecords"))
