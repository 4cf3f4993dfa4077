from .audit import AuditClient
from .common import OkapiClient
from .entity_links import EntitiesLinksStatsClient
from .feesfines import FeesFinesClient
from .reference import ReferenceClient
from .users import UserClient

__all__ = [
    "AuditClient",
    "EntitiesLinksStatsClient",
    "FeesFinesClient",
    "OkapiClient",
    "ReferenceClient",
    "UserClient",
]
