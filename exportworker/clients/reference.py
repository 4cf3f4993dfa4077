"""
Reference data endpoints: small lookup collections used to enrich records.

Every kind is described by a ReferenceKind: where it lives, which key holds
the collection in a query response, and which field identifies it by name.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .common import OkapiClient


@dataclass(frozen=True)
class ReferenceKind:
    name: str
    label: str
    path: str
    collection_key: str
    name_field: str = "name"
    query_limit: Optional[int] = None


REFERENCE_KINDS: Dict[str, ReferenceKind] = {
    kind.name: kind
    for kind in (
        ReferenceKind("call_number_types", "Call number type", "call-number-types", "callNumberTypes"),
        ReferenceKind("damaged_statuses", "Damaged status", "item-damaged-statuses", "itemDamageStatuses"),
        ReferenceKind("note_types", "Note type", "item-note-types", "itemNoteTypes"),
        ReferenceKind(
            "relationships",
            "Electronic access relationship",
            "electronic-access-relationships",
            "electronicAccessRelationships",
        ),
        ReferenceKind("service_points", "Service point", "service-points", "servicepoints", query_limit=1),
        ReferenceKind("statistical_codes", "Statistical code", "statistical-codes", "statisticalCodes", name_field="code"),
        ReferenceKind("users", "User", "users", "users", name_field="username"),
        ReferenceKind("user_groups", "User group", "groups", "usergroups", name_field="group"),
        ReferenceKind("locations", "Location", "locations", "locations"),
        ReferenceKind("material_types", "Material type", "material-types", "mtypes"),
        ReferenceKind("holdings", "Holdings record", "holdings-storage/holdings", "holdingsRecords", name_field="hrid"),
        ReferenceKind("instances", "Instance", "instance-storage/instances", "instances", name_field="hrid"),
        ReferenceKind("loan_types", "Loan type", "loan-types", "loantypes"),
    )
}


def get_kind(kind: str) -> ReferenceKind:
    try:
        return REFERENCE_KINDS[kind]
    except KeyError:
        raise ValueError(f"Unknown reference kind: {kind}") from None


class ReferenceClient:
    """getById / getByQuery over the reference kinds."""

    SERVICE = "reference-data"

    def __init__(self, http: OkapiClient):
        self.http = http

    def get_by_id(self, kind: str, entity_id: str) -> Dict[str, Any]:
        ref = get_kind(kind)
        return self.http.get_json(f"{ref.path}/{entity_id}", self.SERVICE, kind=ref.label, key=entity_id)

    def get_by_query(self, kind: str, expression: str) -> List[Dict[str, Any]]:
        ref = get_kind(kind)
        params: Dict[str, Any] = {"query": expression}
        if ref.query_limit is not None:
            params["limit"] = ref.query_limit
        data = self.http.get_json(ref.path, self.SERVICE, params=params) or {}
        return list(data.get(ref.collection_key) or [])
