"""Thin JSON-over-HTTP client for the Zep API."""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from typing import Any

from . import __version__
from .config import Settings
from .errors import TransportError
from .tasks import TaskRecord

log = logging.getLogger(__name__)


def _q(segment: str) -> str:
    return urllib.parse.quote(segment, safe="")


def _params(**kw: Any) -> dict[str, Any]:
    """Drop unset query parameters (None, empty string, zero)."""
    return {k: v for k, v in kw.items() if v not in (None, "", 0)}


class ZepClient:
    """One method per API operation. Every method returns decoded JSON.

    Connection failures and non-2xx responses raise TransportError.
    Nothing is retried here.
    """

    def __init__(self, api_key: str, base_url: str, timeout: float = 30.0):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "ZepClient":
        return cls(settings.api_key, settings.api_url)

    def request(self, method: str, path: str, params: dict | None = None,
                body: Any = None) -> Any:
        url = self.base_url + path
        if params:
            url += "?" + urllib.parse.urlencode(params)
        data = json.dumps(body).encode() if body is not None else None
        req = urllib.request.Request(
            url, data=data, method=method,
            headers={
                "Authorization": f"Api-Key {self.api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
                "User-Agent": f"zepctl/{__version__}",
            },
        )
        log.debug("%s %s", method, url)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            detail = e.read().decode(errors="replace") if e.fp else ""
            raise TransportError(
                f"{method} {path}: HTTP {e.code}: {_error_message(detail) or e.reason}",
                status=e.code, body=detail,
            ) from e
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            reason = getattr(e, "reason", e)
            raise TransportError(f"{method} {path}: {reason}") from e

        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise TransportError(f"{method} {path}: invalid JSON response: {e}") from e

    def get(self, path: str, **params: Any) -> Any:
        return self.request("GET", path, params=_params(**params))

    def post(self, path: str, body: Any = None) -> Any:
        return self.request("POST", path, body=body if body is not None else {})

    def patch(self, path: str, body: Any) -> Any:
        return self.request("PATCH", path, body=body)

    def put(self, path: str, body: Any) -> Any:
        return self.request("PUT", path, body=body)

    def delete(self, path: str, body: Any = None) -> Any:
        return self.request("DELETE", path, body=body)

    # ── project ───────────────────────────────────────────────────────

    def get_project(self) -> Any:
        return self.get("/projects/info")

    # ── users ─────────────────────────────────────────────────────────

    def list_users(self, page: int = 1, page_size: int = 50) -> Any:
        return self.get("/users-ordered", pageNumber=page, pageSize=page_size)

    def get_user(self, user_id: str) -> Any:
        return self.get(f"/users/{_q(user_id)}")

    def create_user(self, user_id: str, **fields: Any) -> Any:
        body = {"user_id": user_id, **{k: v for k, v in fields.items() if v is not None}}
        return self.post("/users", body)

    def update_user(self, user_id: str, **fields: Any) -> Any:
        return self.patch(f"/users/{_q(user_id)}",
                          {k: v for k, v in fields.items() if v is not None})

    def delete_user(self, user_id: str) -> Any:
        return self.delete(f"/users/{_q(user_id)}")

    def get_user_threads(self, user_id: str) -> Any:
        return self.get(f"/users/{_q(user_id)}/threads")

    def get_user_node(self, user_id: str) -> Any:
        return self.get(f"/users/{_q(user_id)}/node")

    # ── summary instructions ──────────────────────────────────────────

    def list_summary_instructions(self, user_id: str = "") -> Any:
        return self.get("/user-summary-instructions", user_id=user_id)

    def add_summary_instructions(self, instructions: list[dict], user_ids: list[str]) -> Any:
        body: dict[str, Any] = {"instructions": instructions}
        if user_ids:
            body["user_ids"] = user_ids
        return self.post("/user-summary-instructions", body)

    def delete_summary_instructions(self, names: list[str], user_ids: list[str]) -> Any:
        body: dict[str, Any] = {"instruction_names": names}
        if user_ids:
            body["user_ids"] = user_ids
        return self.delete("/user-summary-instructions", body)

    # ── threads ───────────────────────────────────────────────────────

    def list_threads(self, page: int = 1, page_size: int = 50) -> Any:
        return self.get("/threads", page_number=page, page_size=page_size)

    def create_thread(self, thread_id: str, user_id: str) -> Any:
        return self.post("/threads", {"thread_id": thread_id, "user_id": user_id})

    def get_thread(self, thread_id: str, last_n: int = 0, limit: int = 0) -> Any:
        return self.get(f"/threads/{_q(thread_id)}", lastn=last_n, limit=limit)

    def delete_thread(self, thread_id: str) -> Any:
        return self.delete(f"/threads/{_q(thread_id)}")

    def add_messages(self, thread_id: str, messages: list[dict], batch: bool = False) -> Any:
        suffix = "messages-batch" if batch else "messages"
        return self.post(f"/threads/{_q(thread_id)}/{suffix}", {"messages": messages})

    def get_thread_context(self, thread_id: str) -> Any:
        return self.get(f"/threads/{_q(thread_id)}/context")

    # ── graphs ────────────────────────────────────────────────────────

    def list_graphs(self, page: int = 1, page_size: int = 50) -> Any:
        return self.get("/graph/list-all", pageNumber=page, pageSize=page_size)

    def create_graph(self, graph_id: str, name: str = "", description: str = "") -> Any:
        body = {"graph_id": graph_id}
        if name:
            body["name"] = name
        if description:
            body["description"] = description
        return self.post("/graph/create", body)

    def delete_graph(self, graph_id: str) -> Any:
        return self.delete(f"/graph/{_q(graph_id)}")

    def clone_graph(self, **target: str) -> Any:
        return self.post("/graph/clone", {k: v for k, v in target.items() if v})

    def add_data(self, data: str, data_type: str, *, graph_id: str = "",
                 user_id: str = "") -> Any:
        return self.post("/graph", _owner({"data": data, "type": data_type},
                                          graph_id, user_id))

    def add_data_batch(self, episodes: list[dict], *, graph_id: str = "",
                       user_id: str = "") -> Any:
        return self.post("/graph-batch", _owner({"episodes": episodes}, graph_id, user_id))

    def search(self, query: dict[str, Any]) -> Any:
        return self.post("/graph/search", query)

    # ── nodes / edges / episodes ──────────────────────────────────────

    def list_nodes(self, *, graph_id: str = "", user_id: str = "",
                   limit: int = 0, cursor: str = "") -> Any:
        body: dict[str, Any] = {}
        if limit:
            body["limit"] = limit
        if cursor:
            body["uuid_cursor"] = cursor
        return self.post(_owner_path("/graph/node", graph_id, user_id), body)

    def get_node(self, uuid: str) -> Any:
        return self.get(f"/graph/node/{_q(uuid)}")

    def get_node_edges(self, uuid: str) -> Any:
        return self.get(f"/graph/node/{_q(uuid)}/entity-edges")

    def get_node_episodes(self, uuid: str) -> Any:
        return self.get(f"/graph/node/{_q(uuid)}/episodes")

    def list_edges(self, *, graph_id: str = "", user_id: str = "",
                   limit: int = 0, cursor: str = "") -> Any:
        body: dict[str, Any] = {}
        if limit:
            body["limit"] = limit
        if cursor:
            body["uuid_cursor"] = cursor
        return self.post(_owner_path("/graph/edge", graph_id, user_id), body)

    def get_edge(self, uuid: str) -> Any:
        return self.get(f"/graph/edge/{_q(uuid)}")

    def delete_edge(self, uuid: str) -> Any:
        return self.delete(f"/graph/edge/{_q(uuid)}")

    def list_episodes(self, *, graph_id: str = "", user_id: str = "", last_n: int = 0) -> Any:
        return self.get(_owner_path("/graph/episodes", graph_id, user_id), lastn=last_n)

    def get_episode(self, uuid: str) -> Any:
        return self.get(f"/graph/episodes/{_q(uuid)}")

    def get_episode_mentions(self, uuid: str) -> Any:
        return self.get(f"/graph/episodes/{_q(uuid)}/mentions")

    def delete_episode(self, uuid: str) -> Any:
        return self.delete(f"/graph/episodes/{_q(uuid)}")

    # ── ontology ──────────────────────────────────────────────────────

    def get_ontology(self) -> Any:
        return self.get("/entity-types")

    def set_ontology(self, request: dict[str, Any]) -> Any:
        return self.put("/entity-types", request)

    # ── tasks ─────────────────────────────────────────────────────────

    def get_task(self, task_id: str) -> TaskRecord:
        return TaskRecord.from_api(self.get(f"/tasks/{_q(task_id)}") or {})


def _owner(body: dict[str, Any], graph_id: str, user_id: str) -> dict[str, Any]:
    if user_id:
        body["user_id"] = user_id
    else:
        body["graph_id"] = graph_id
    return body


def _owner_path(prefix: str, graph_id: str, user_id: str) -> str:
    if user_id:
        return f"{prefix}/user/{_q(user_id)}"
    return f"{prefix}/graph/{_q(graph_id)}"


def _error_message(detail: str) -> str:
    """Pull ``message`` out of a JSON error body, if there is one."""
    try:
        data = json.loads(detail)
    except (json.JSONDecodeError, TypeError):
        return detail.strip()[:200]
    if isinstance(data, dict):
        return str(data.get("message") or data.get("error") or "")
    return ""
