from typing import Any, Dict, List, Optional

from .common import OkapiClient


class UserClient:
    """User records: read for preview/snapshot, write for bulk updates."""

    SERVICE = "users"

    def __init__(self, http: OkapiClient):
        self.http = http

    def get_users_by_query(self, query: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"query": query}
        if limit is not None:
            params["limit"] = limit
        data = self.http.get_json("users", self.SERVICE, params=params) or {}
        return list(data.get("users") or [])

    def get_user_by_id(self, user_id: str) -> Dict[str, Any]:
        return self.http.get_json(f"users/{user_id}", self.SERVICE, kind="User", key=user_id)

    def update_user(self, user: Dict[str, Any]) -> None:
        user_id = user.get("id")
        if not user_id:
            raise ValueError("User record has no id")
        self.http.put_json(f"users/{user_id}", self.SERVICE, user, kind="User", key=user_id)
