from .common import OkapiClient
from ..pagination import Page

UPDATE_HEADING = "UPDATE_HEADING"


class EntitiesLinksStatsClient:
    """Authority link statistics, paged by a "next" date marker walking backwards from toDate."""

    SERVICE = "entity-links"

    def __init__(self, http: OkapiClient):
        self.http = http

    def get_authority_stats(self, limit: int, action: str, from_date: str, to_date: str) -> Page:
        params = {
            "limit": limit,
            "action": action,
            "fromDate": from_date,
            "toDate": to_date,
        }
        data = self.http.get_json("links/stats/authority", self.SERVICE, params=params) or {}
        return Page(records=data.get("stats") or [], next=data.get("next"))
