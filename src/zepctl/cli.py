"""zepctl CLI: administer Zep users, threads and knowledge graphs."""

from __future__ import annotations

import argparse
import logging
import re
import sys
from typing import Any, Iterable

from . import __version__
from .config import Config, Profile, load_config, resolve_settings
from .errors import ConfigError, ZepctlError
from .filters import build_search_filters
from .output import Printer, truncate
from .tasks import DEFAULT_POLL_INTERVAL, DEFAULT_TIMEOUT, TaskWaiter
from .values import (
    OntologyDefinition,
    load_document,
    parse_metadata,
    read_source,
    validate_metadata,
)

log = logging.getLogger(__name__)


def _printer(args, cfg: Config) -> Printer:
    settings = resolve_settings(cfg, profile=args.profile, output=args.output,
                                require_key=False)
    return Printer(settings.output, quiet=args.quiet)


def _client(args, cfg: Config):
    from .client import ZepClient
    settings = resolve_settings(cfg, api_key=args.api_key, api_url=args.api_url,
                                profile=args.profile, output=args.output)
    log.debug("using %s (profile=%s)", settings.api_url, settings.profile or "-")
    return ZepClient.from_settings(settings)


def _session(args, cfg: Config):
    return _client(args, cfg), _printer(args, cfg)


def _confirm(prompt: str, force: bool) -> bool:
    if force:
        return True
    try:
        answer = input(f"{prompt} [y/N]: ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def _csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [s.strip() for s in value.split(",") if s.strip()]


def _get(obj: Any, key: str, default: Any = "") -> Any:
    if isinstance(obj, dict):
        v = obj.get(key)
        return default if v is None else v
    return default


def _items(resp: Any, key: str) -> list:
    if isinstance(resp, list):
        return resp
    return _get(resp, key, []) or []


def _require_owner(args) -> None:
    if not args.user and not args.graph:
        raise ZepctlError("either --user or --graph is required")


def _metadata(args):
    text = read_source(path=args.metadata_file, inline=args.metadata)
    if not text:
        return None
    return parse_metadata(text, None if args.metadata else args.metadata_file)


_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, None: 1.0}


def parse_duration(text: str) -> float:
    """Parse ``90``, ``1.5s``, ``500ms``, ``5m`` or ``1h`` into seconds."""
    m = _DURATION_RE.match(text)
    if not m:
        raise argparse.ArgumentTypeError(f"invalid duration {text!r} (e.g. 30s, 5m, 500ms)")
    seconds = float(m.group(1)) * _UNITS[m.group(2)]
    if seconds <= 0:
        raise argparse.ArgumentTypeError(f"duration must be positive: {text!r}")
    return seconds


def _wait(args, client, out: Printer, task_id: str):
    waiter = TaskWaiter(client.get_task, out.info)
    return waiter.wait(task_id, args.timeout, args.poll_interval)


# ── config ─────────────────────────────────────────────────────────────

def cmd_config_view(args, cfg: Config):
    """Print the config file contents (API keys are never stored there)."""
    out = _printer(args, cfg)
    data = cfg.model_dump()
    if out.format == "json":
        out.print(data)
    else:
        Printer("yaml", out=out.out).print(data)


def cmd_config_get_profiles(args, cfg: Config):
    out = _printer(args, cfg)
    if not out.tabular:
        out.print([p.model_dump() for p in cfg.profiles])
        return
    rows = [("*" if p.name == cfg.current_profile else "", p.name, p.api_url or "(default)",
             p.api_key_env) for p in cfg.profiles]
    out.table(["CURRENT", "NAME", "API URL", "API KEY ENV"], rows)


def cmd_config_use_profile(args, cfg: Config):
    cfg.use_profile(args.name)
    cfg.save()
    _printer(args, cfg).info(f"Switched to profile {args.name!r}")


def cmd_config_add_profile(args, cfg: Config):
    existed = cfg.get_profile(args.name) is not None
    cfg.add_profile(Profile(name=args.name, api_url=args.api_url or "",
                            api_key_env=args.api_key_env or ""))
    if args.use:
        cfg.use_profile(args.name)
    path = cfg.save()
    verb = "Updated" if existed else "Added"
    _printer(args, cfg).info(f"{verb} profile {args.name!r} in {path}")


def cmd_config_delete_profile(args, cfg: Config):
    if cfg.get_profile(args.name) is None:
        raise ConfigError(f"profile {args.name!r} not found")
    out = _printer(args, cfg)
    if not _confirm(f"Delete profile {args.name!r}?", args.force):
        out.info("Aborted")
        return
    cfg.delete_profile(args.name)
    cfg.save()
    out.info(f"Deleted profile {args.name!r}")


# ── project ────────────────────────────────────────────────────────────

def cmd_project_get(args, cfg: Config):
    client, out = _session(args, cfg)
    resp = client.get_project()
    project = _get(resp, "project", resp)
    if out.tabular:
        out.fields([("UUID", _get(project, "uuid")), ("Name", _get(project, "name")),
                    ("Description", _get(project, "description")),
                    ("Created At", _get(project, "created_at"))])
        return
    out.print(resp)


# ── users ──────────────────────────────────────────────────────────────

def cmd_user_list(args, cfg: Config):
    client, out = _session(args, cfg)
    resp = client.list_users(args.page, args.page_size or cfg.defaults.page_size)
    if out.tabular:
        out.table(["USER ID", "EMAIL", "FIRST NAME", "LAST NAME", "CREATED AT"],
                  [(_get(u, "user_id"), _get(u, "email"), _get(u, "first_name"),
                    _get(u, "last_name"), _get(u, "created_at"))
                   for u in _items(resp, "users")])
        total = _get(resp, "total_count", None)
        if total is not None:
            out.info(f"\nTotal: {total} users")
        return
    out.print(resp)


def cmd_user_get(args, cfg: Config):
    client, out = _session(args, cfg)
    user = client.get_user(args.user_id)
    if out.tabular:
        out.fields([("User ID", _get(user, "user_id")), ("UUID", _get(user, "uuid")),
                    ("Email", _get(user, "email")), ("First Name", _get(user, "first_name")),
                    ("Last Name", _get(user, "last_name")),
                    ("Created At", _get(user, "created_at"))])
        return
    out.print(user)


def _user_fields(args) -> dict[str, Any]:
    return {
        "email": args.email or None,
        "first_name": args.first_name or None,
        "last_name": args.last_name or None,
        "metadata": _metadata(args),
    }


def cmd_user_create(args, cfg: Config):
    fields = _user_fields(args)
    client, out = _session(args, cfg)
    user = client.create_user(args.user_id, **fields)
    out.info(f"Created user {args.user_id!r}")
    out.print(user)


def cmd_user_update(args, cfg: Config):
    fields = _user_fields(args)
    client, out = _session(args, cfg)
    user = client.update_user(args.user_id, **fields)
    out.info(f"Updated user {args.user_id!r}")
    out.print(user)


def cmd_user_delete(args, cfg: Config):
    client, out = _session(args, cfg)
    if not _confirm(f"Delete user {args.user_id!r} and all associated data?", args.force):
        out.info("Aborted")
        return
    client.delete_user(args.user_id)
    out.info(f"Deleted user {args.user_id!r}")


def cmd_user_threads(args, cfg: Config):
    client, out = _session(args, cfg)
    threads = _items(client.get_user_threads(args.user_id), "threads")
    if out.tabular:
        out.table(["THREAD ID", "CREATED AT"],
                  [(_get(t, "thread_id"), _get(t, "created_at")) for t in threads])
        return
    out.print(threads)


def cmd_user_node(args, cfg: Config):
    client, out = _session(args, cfg)
    resp = client.get_user_node(args.user_id)
    node = _get(resp, "node", resp)
    if out.tabular and isinstance(node, dict):
        out.fields([("UUID", _get(node, "uuid")), ("Name", _get(node, "name")),
                    ("Summary", _get(node, "summary"))])
        return
    out.print(resp)


# ── summary instructions ───────────────────────────────────────────────

def cmd_instructions_list(args, cfg: Config):
    client, out = _session(args, cfg)
    resp = client.list_summary_instructions(args.user or "")
    items = _items(resp, "instructions")
    if out.tabular:
        out.table(["NAME", "INSTRUCTION"],
                  [(_get(i, "name"), truncate(_get(i, "text"), 80)) for i in items])
        return
    out.print(resp)


def cmd_instructions_add(args, cfg: Config):
    if not args.name:
        raise ZepctlError("--name is required")
    text = read_source(path=args.file, inline=args.instruction).strip()
    if not text:
        raise ZepctlError("either --instruction or --file is required")
    client, out = _session(args, cfg)
    resp = client.add_summary_instructions([{"name": args.name, "text": text}], _csv(args.user))
    out.info(f"Added summary instruction {args.name!r}")
    if not out.tabular:
        out.print(resp)


def cmd_instructions_delete(args, cfg: Config):
    client, out = _session(args, cfg)
    if not _confirm(f"Delete summary instruction {args.name!r}?", args.force):
        out.info("Aborted")
        return
    client.delete_summary_instructions([args.name], _csv(args.user))
    out.info(f"Deleted summary instruction {args.name!r}")


# ── threads ────────────────────────────────────────────────────────────

def _message_rows(messages: list) -> list[tuple]:
    return [(_get(m, "uuid"), _get(m, "role"), truncate(_get(m, "content"), 60),
             _get(m, "created_at")) for m in messages]


def cmd_thread_list(args, cfg: Config):
    client, out = _session(args, cfg)
    resp = client.list_threads(args.page, args.page_size or cfg.defaults.page_size)
    if out.tabular:
        out.table(["THREAD ID", "USER ID", "CREATED AT"],
                  [(_get(t, "thread_id"), _get(t, "user_id"), _get(t, "created_at"))
                   for t in _items(resp, "threads")])
        return
    out.print(resp)


def cmd_thread_create(args, cfg: Config):
    if not args.user:
        raise ZepctlError("--user is required")
    client, out = _session(args, cfg)
    thread = client.create_thread(args.thread_id, args.user)
    out.info(f"Created thread {args.thread_id!r} for user {args.user!r}")
    out.print(thread)


def cmd_thread_get(args, cfg: Config):
    client, out = _session(args, cfg)
    resp = client.get_thread(args.thread_id, last_n=args.last)
    if out.tabular:
        out.table(["UUID", "ROLE", "CONTENT", "CREATED AT"],
                  _message_rows(_items(resp, "messages")))
        return
    out.print(resp)


def cmd_thread_messages(args, cfg: Config):
    client, out = _session(args, cfg)
    resp = client.get_thread(args.thread_id, last_n=args.last, limit=args.limit)
    messages = _items(resp, "messages")
    if out.tabular:
        out.table(["UUID", "ROLE", "CONTENT", "CREATED AT"], _message_rows(messages))
        return
    out.print(messages)


def cmd_thread_delete(args, cfg: Config):
    client, out = _session(args, cfg)
    if not _confirm(f"Delete thread {args.thread_id!r}?", args.force):
        out.info("Aborted")
        return
    client.delete_thread(args.thread_id)
    out.info(f"Deleted thread {args.thread_id!r}")


def _load_messages(args) -> list[dict]:
    text = read_source(path=args.file, stdin=args.stdin)
    if not text:
        raise ZepctlError("either --file or --stdin is required")
    data = load_document(text, args.file)
    raw = data.get("messages") if isinstance(data, dict) else None
    if not isinstance(raw, list):
        raise ZepctlError('parsing messages: expected {"messages": [...]}')
    messages = []
    for m in raw:
        if not isinstance(m, dict) or not m.get("role") or "content" not in m:
            raise ZepctlError(f"parsing messages: each message needs role and content: {m!r}")
        msg = {"role": m["role"], "content": m["content"]}
        if m.get("name"):
            msg["name"] = m["name"]
        if m.get("metadata") is not None:
            msg["metadata"] = validate_metadata(m["metadata"])
        messages.append(msg)
    return messages


def cmd_thread_add_messages(args, cfg: Config):
    messages = _load_messages(args)
    client, out = _session(args, cfg)
    resp = client.add_messages(args.thread_id, messages, batch=args.batch)
    task_id = _get(resp, "task_id")
    if args.batch and task_id:
        out.info(f"Batch task started: {task_id}")
        if args.wait:
            _wait(args, client, out, task_id)
            out.info("Batch processing completed")
    else:
        out.info(f"Added {len(messages)} messages to thread {args.thread_id!r}")
    out.print(resp)


def cmd_thread_context(args, cfg: Config):
    client, out = _session(args, cfg)
    resp = client.get_thread_context(args.thread_id)
    if out.tabular:
        print(_get(resp, "context"), file=out.out)
        return
    out.print(resp)


# ── graphs ─────────────────────────────────────────────────────────────

def cmd_graph_list(args, cfg: Config):
    client, out = _session(args, cfg)
    resp = client.list_graphs(args.page, args.page_size or cfg.defaults.page_size)
    if out.tabular:
        out.table(["UUID", "GRAPH ID", "NAME", "CREATED AT"],
                  [(_get(g, "uuid"), _get(g, "graph_id"), _get(g, "name"), _get(g, "created_at"))
                   for g in _items(resp, "graphs")])
        return
    out.print(resp)


def cmd_graph_create(args, cfg: Config):
    client, out = _session(args, cfg)
    graph = client.create_graph(args.graph_id, name=args.name or "",
                                description=args.description or "")
    out.info(f"Created graph {args.graph_id!r}")
    out.print(graph)


def cmd_graph_delete(args, cfg: Config):
    client, out = _session(args, cfg)
    if not _confirm(f"Delete graph {args.graph_id!r}?", args.force):
        out.info("Aborted")
        return
    client.delete_graph(args.graph_id)
    out.info(f"Deleted graph {args.graph_id!r}")


def cmd_graph_clone(args, cfg: Config):
    if not args.source_user and not args.source_graph:
        raise ZepctlError("either --source-user or --source-graph is required")
    client, out = _session(args, cfg)
    if args.source_user:
        resp = client.clone_graph(source_user_id=args.source_user,
                                  target_user_id=args.target_user or "")
    else:
        resp = client.clone_graph(source_graph_id=args.source_graph,
                                  target_graph_id=args.target_graph or "")

    if _get(resp, "graph_id"):
        out.info(f"Cloned to graph: {resp['graph_id']}")
    elif _get(resp, "user_id"):
        out.info(f"Cloned to user: {resp['user_id']}")

    task_id = _get(resp, "task_id")
    if args.wait:
        if task_id:
            _wait(args, client, out, task_id)
        else:
            out.warn("clone response has no task id; nothing to wait for")
    out.print(resp)


def cmd_graph_add(args, cfg: Config):
    if not args.user and not args.graph_id:
        raise ZepctlError("either graph-id argument or --user flag is required")
    owner = {"graph_id": args.graph_id or "", "user_id": args.user or ""}

    if args.batch:
        text = read_source(path=args.file, stdin=args.stdin)
        if not text:
            raise ZepctlError("--file or --stdin is required for batch mode")
        data = load_document(text, args.file)
        raw = data.get("episodes") if isinstance(data, dict) else None
        if not isinstance(raw, list):
            raise ZepctlError('parsing episodes: expected {"episodes": [...]}')
        episodes = [{"type": _get(e, "type", "text"), "data": _get(e, "data")} for e in raw]

        client, out = _session(args, cfg)
        resp = client.add_data_batch(episodes, **owner)
        out.info(f"Added {len(_items(resp, 'episodes'))} episodes to graph")
        if args.wait:
            task_ids = list(dict.fromkeys(
                _get(e, "task_id") for e in _items(resp, "episodes") if _get(e, "task_id")))
            for task_id in task_ids:
                _wait(args, client, out, task_id)
        out.print(resp)
        return

    text = read_source(path=args.file, inline=args.data, stdin=args.stdin)
    if not text:
        raise ZepctlError("--data, --file, or --stdin is required")
    client, out = _session(args, cfg)
    resp = client.add_data(text, args.type, **owner)
    out.info("Added data to graph")
    task_id = _get(resp, "task_id")
    if args.wait and task_id:
        _wait(args, client, out, task_id)
    out.print(resp)


def cmd_graph_search(args, cfg: Config):
    """Search edges, nodes or episodes.

    Filters are parsed before any client is created, so a bad
    --property-filter or --date-filter never reaches the API.
    """
    _require_owner(args)
    filters = build_search_filters(
        property_exprs=args.property_filter or [],
        date_exprs=args.date_filter or [],
        node_labels=_csv(args.node_labels),
        edge_types=_csv(args.edge_types),
        exclude_node_labels=_csv(args.exclude_node_labels),
        exclude_edge_types=_csv(args.exclude_edge_types),
    )

    query: dict[str, Any] = {"query": args.query, "limit": args.limit, "scope": args.scope}
    if args.user:
        query["user_id"] = args.user
    else:
        query["graph_id"] = args.graph
    if args.reranker:
        query["reranker"] = args.reranker
    if args.mmr_lambda:
        query["mmr_lambda"] = args.mmr_lambda
    if args.min_score:
        query["min_score"] = args.min_score
    if not filters.is_empty():
        query["search_filters"] = filters.to_wire()

    client, out = _session(args, cfg)
    resp = client.search(query)

    if out.tabular and args.scope == "edges":
        out.table(["UUID", "FACT", "VALID AT", "INVALID AT"],
                  [(_get(e, "uuid"), truncate(_get(e, "fact"), 60), _get(e, "valid_at"),
                    _get(e, "invalid_at")) for e in _items(resp, "edges")])
        return
    if out.tabular and args.scope == "nodes":
        out.table(["UUID", "NAME", "SUMMARY"],
                  [(_get(n, "uuid"), _get(n, "name"), truncate(_get(n, "summary"), 50))
                   for n in _items(resp, "nodes")])
        return
    out.print(resp)


# ── nodes / edges / episodes ───────────────────────────────────────────

def cmd_node_list(args, cfg: Config):
    _require_owner(args)
    client, out = _session(args, cfg)
    nodes = client.list_nodes(graph_id=args.graph or "", user_id=args.user or "",
                              limit=args.limit, cursor=args.cursor or "")
    nodes = _items(nodes, "nodes")
    if out.tabular:
        out.table(["UUID", "NAME", "LABELS", "CREATED AT"],
                  [(_get(n, "uuid"), _get(n, "name"), ",".join(_get(n, "labels", [])),
                    _get(n, "created_at")) for n in nodes])
        if nodes and len(nodes) == args.limit:
            out.info(f"\nNext page: --cursor {_get(nodes[-1], 'uuid')}")
        return
    out.print(nodes)


def cmd_node_get(args, cfg: Config):
    client, out = _session(args, cfg)
    node = client.get_node(args.uuid)
    if out.tabular:
        out.fields([("UUID", _get(node, "uuid")), ("Name", _get(node, "name")),
                    ("Labels", ",".join(_get(node, "labels", []))),
                    ("Summary", _get(node, "summary")),
                    ("Created At", _get(node, "created_at"))])
        return
    out.print(node)


def _edge_rows(edges: list) -> list[tuple]:
    return [(_get(e, "uuid"), _get(e, "name"), truncate(_get(e, "fact"), 60),
             _get(e, "created_at")) for e in edges]


def cmd_node_edges(args, cfg: Config):
    client, out = _session(args, cfg)
    edges = _items(client.get_node_edges(args.uuid), "edges")
    if out.tabular:
        out.table(["UUID", "NAME", "FACT", "CREATED AT"], _edge_rows(edges))
        return
    out.print(edges)


def _episode_rows(episodes: list) -> list[tuple]:
    return [(_get(e, "uuid"), _get(e, "source"), truncate(_get(e, "content"), 60),
             _get(e, "created_at")) for e in episodes]


def cmd_node_episodes(args, cfg: Config):
    client, out = _session(args, cfg)
    resp = client.get_node_episodes(args.uuid)
    if out.tabular:
        out.table(["UUID", "SOURCE", "CONTENT", "CREATED AT"],
                  _episode_rows(_items(resp, "episodes")))
        return
    out.print(resp)


def cmd_edge_list(args, cfg: Config):
    _require_owner(args)
    client, out = _session(args, cfg)
    edges = _items(client.list_edges(graph_id=args.graph or "", user_id=args.user or "",
                                     limit=args.limit, cursor=args.cursor or ""), "edges")
    if out.tabular:
        out.table(["UUID", "NAME", "FACT", "CREATED AT"], _edge_rows(edges))
        return
    out.print(edges)


def cmd_edge_get(args, cfg: Config):
    client, out = _session(args, cfg)
    edge = client.get_edge(args.uuid)
    if out.tabular:
        out.fields([("UUID", _get(edge, "uuid")), ("Name", _get(edge, "name")),
                    ("Fact", _get(edge, "fact")),
                    ("Source Node", _get(edge, "source_node_uuid")),
                    ("Target Node", _get(edge, "target_node_uuid")),
                    ("Valid At", _get(edge, "valid_at")),
                    ("Invalid At", _get(edge, "invalid_at")),
                    ("Created At", _get(edge, "created_at"))])
        return
    out.print(edge)


def cmd_edge_delete(args, cfg: Config):
    client, out = _session(args, cfg)
    if not _confirm(f"Delete edge {args.uuid!r}?", args.force):
        out.info("Aborted")
        return
    client.delete_edge(args.uuid)
    out.info(f"Deleted edge {args.uuid!r}")


def cmd_episode_list(args, cfg: Config):
    _require_owner(args)
    client, out = _session(args, cfg)
    resp = client.list_episodes(graph_id=args.graph or "", user_id=args.user or "",
                                last_n=args.last)
    if out.tabular:
        out.table(["UUID", "SOURCE", "CONTENT", "CREATED AT"],
                  _episode_rows(_items(resp, "episodes")))
        return
    out.print(resp)


def cmd_episode_get(args, cfg: Config):
    client, out = _session(args, cfg)
    ep = client.get_episode(args.uuid)
    if out.tabular:
        out.fields([("UUID", _get(ep, "uuid")), ("Source", _get(ep, "source")),
                    ("Processed", _get(ep, "processed")),
                    ("Content", truncate(_get(ep, "content"), 200)),
                    ("Created At", _get(ep, "created_at"))])
        return
    out.print(ep)


def cmd_episode_mentions(args, cfg: Config):
    client, out = _session(args, cfg)
    resp = client.get_episode_mentions(args.uuid)
    if out.tabular:
        nodes = _items(resp, "nodes")
        edges = _items(resp, "edges")
        out.table(["KIND", "UUID", "NAME", "DETAIL"],
                  [("node", _get(n, "uuid"), _get(n, "name"), truncate(_get(n, "summary"), 50))
                   for n in nodes] +
                  [("edge", _get(e, "uuid"), _get(e, "name"), truncate(_get(e, "fact"), 50))
                   for e in edges])
        return
    out.print(resp)


def cmd_episode_delete(args, cfg: Config):
    client, out = _session(args, cfg)
    if not _confirm(f"Delete episode {args.uuid!r}?", args.force):
        out.info("Aborted")
        return
    client.delete_episode(args.uuid)
    out.info(f"Deleted episode {args.uuid!r}")


# ── ontology ───────────────────────────────────────────────────────────

def cmd_ontology_get(args, cfg: Config):
    client, out = _session(args, cfg)
    resp = client.get_ontology()
    if out.tabular:
        rows = [("entity", _get(t, "name"), truncate(_get(t, "description"), 60))
                for t in _items(resp, "entity_types")]
        rows += [("edge", _get(t, "name"), truncate(_get(t, "description"), 60))
                 for t in _items(resp, "edge_types")]
        out.table(["KIND", "NAME", "DESCRIPTION"], rows)
        return
    out.print(resp)


def cmd_ontology_set(args, cfg: Config):
    if not args.file:
        raise ZepctlError("--file is required")
    ontology = OntologyDefinition.from_text(read_source(path=args.file), args.file)
    client, out = _session(args, cfg)
    resp = client.set_ontology(ontology.to_request())
    if out.tabular:
        out.info(f"Ontology set successfully ({len(ontology.entities)} entity types, "
                 f"{len(ontology.edges)} edge types)")
        return
    out.print(resp)


# ── tasks ──────────────────────────────────────────────────────────────

def cmd_task_get(args, cfg: Config):
    client, out = _session(args, cfg)
    task = client.get_task(args.task_id)
    if out.tabular:
        out.fields([("Task ID", task.task_id), ("Status", task.status), ("Type", task.type),
                    ("Created At", task.created_at), ("Started At", task.started_at),
                    ("Completed At", task.completed_at), ("Error", task.error_message)])
        return
    out.print(task)


def cmd_task_wait(args, cfg: Config):
    """Poll until the task completes or fails, or --timeout elapses."""
    client, out = _session(args, cfg)
    task = _wait(args, client, out, args.task_id)
    if not out.tabular:
        out.print(task)


# ── parser ─────────────────────────────────────────────────────────────

def _common(p):
    p.add_argument("--config", help="Config file (default ~/.zepctl/config.yaml)")
    p.add_argument("-k", "--api-key", help="API key (default $ZEP_API_KEY)")
    p.add_argument("--api-url", help="API endpoint URL")
    p.add_argument("-p", "--profile", help="Use a specific profile")
    p.add_argument("-o", "--output", choices=["table", "json", "yaml", "wide"],
                   help="Output format (default from config, else table)")
    p.add_argument("-q", "--quiet", action="store_true", help="Suppress non-essential output")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")


def _paging(p):
    p.add_argument("--page", type=int, default=1, help="Page number")
    p.add_argument("--page-size", type=int, default=0, help="Results per page (default from config)")


def _owner_flags(p, verb: str):
    p.add_argument("--user", help=f"{verb} for user graph")
    p.add_argument("--graph", help=f"{verb} for standalone graph")


def _force(p):
    p.add_argument("--force", action="store_true", help="Skip confirmation prompt")


def _waiting(p):
    p.add_argument("--timeout", type=parse_duration, default=DEFAULT_TIMEOUT,
                   help="Maximum wait time (default 5m)")
    p.add_argument("--poll-interval", type=parse_duration, default=DEFAULT_POLL_INTERVAL,
                   help="Polling interval (default 1s)")


def _group(sub, name: str, help: str, **kw):
    g = sub.add_parser(name, help=help, **kw)
    actions = g.add_subparsers(dest="action", metavar="<command>")
    g.set_defaults(func=None, group_parser=g)
    return actions


def _leaf(actions, name: str, func, help: str):
    s = actions.add_parser(name, help=help)
    s.set_defaults(func=func)
    return s


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="zepctl",
                                description="Administer Zep projects: users, threads and graphs")
    p.add_argument("--version", action="store_true")
    sub = p.add_subparsers(dest="command", metavar="<command>")

    # config
    a = _group(sub, "config", "Manage zepctl configuration")
    s = _leaf(a, "view", cmd_config_view, "Display current configuration")
    _common(s)
    s = _leaf(a, "get-profiles", cmd_config_get_profiles, "List all profiles")
    _common(s)
    s = _leaf(a, "use-profile", cmd_config_use_profile, "Switch active profile")
    s.add_argument("name")
    _common(s)
    s = _leaf(a, "add-profile", cmd_config_add_profile, "Add or update a profile")
    s.add_argument("name")
    s.add_argument("--api-key-env", help="Environment variable holding this profile's API key")
    s.add_argument("--use", action="store_true", help="Make it the current profile")
    _common(s)
    s = _leaf(a, "delete-profile", cmd_config_delete_profile, "Remove a profile")
    s.add_argument("name")
    _force(s)
    _common(s)

    # project
    a = _group(sub, "project", "Project information")
    s = _leaf(a, "get", cmd_project_get, "Get project information")
    _common(s)

    # user
    a = _group(sub, "user", "Manage users")
    s = _leaf(a, "list", cmd_user_list, "List users")
    _paging(s)
    _common(s)
    s = _leaf(a, "get", cmd_user_get, "Get user details")
    s.add_argument("user_id")
    _common(s)
    for name, func, help in (("create", cmd_user_create, "Create a new user"),
                             ("update", cmd_user_update, "Update an existing user")):
        s = _leaf(a, name, func, help)
        s.add_argument("user_id")
        s.add_argument("--email")
        s.add_argument("--first-name")
        s.add_argument("--last-name")
        s.add_argument("--metadata", help="Metadata as a JSON string")
        s.add_argument("--metadata-file", help="Path to a JSON or YAML metadata file")
        _common(s)
    s = _leaf(a, "delete", cmd_user_delete, "Delete a user")
    s.add_argument("user_id")
    _force(s)
    _common(s)
    s = _leaf(a, "threads", cmd_user_threads, "List user threads")
    s.add_argument("user_id")
    _common(s)
    s = _leaf(a, "node", cmd_user_node, "Get user graph node")
    s.add_argument("user_id")
    _common(s)

    # summary-instructions
    a = _group(sub, "summary-instructions", "Manage user summary instructions",
               aliases=["si"])
    s = _leaf(a, "list", cmd_instructions_list, "List summary instructions")
    s.add_argument("--user", help="Filter by user ID")
    _common(s)
    s = _leaf(a, "add", cmd_instructions_add, "Add a summary instruction")
    s.add_argument("--name", help="Instruction name (unique identifier)")
    s.add_argument("--instruction", help="Instruction text")
    s.add_argument("--file", help="File containing the instruction text")
    s.add_argument("--user", help="Apply to specific user(s), comma-separated")
    _common(s)
    s = _leaf(a, "delete", cmd_instructions_delete, "Delete a summary instruction")
    s.add_argument("name")
    s.add_argument("--user", help="Delete from specific user(s), comma-separated")
    _force(s)
    _common(s)

    # thread
    a = _group(sub, "thread", "Manage threads")
    s = _leaf(a, "list", cmd_thread_list, "List threads")
    _paging(s)
    _common(s)
    s = _leaf(a, "create", cmd_thread_create, "Create a new thread")
    s.add_argument("thread_id")
    s.add_argument("--user", help="Owning user ID (required)")
    _common(s)
    s = _leaf(a, "get", cmd_thread_get, "Get thread messages")
    s.add_argument("thread_id")
    s.add_argument("--last", type=int, default=0, help="Last N messages")
    _common(s)
    s = _leaf(a, "delete", cmd_thread_delete, "Delete a thread")
    s.add_argument("thread_id")
    _force(s)
    _common(s)
    s = _leaf(a, "messages", cmd_thread_messages, "List thread messages")
    s.add_argument("thread_id")
    s.add_argument("--last", type=int, default=0, help="Last N messages")
    s.add_argument("--limit", type=int, default=50, help="Maximum messages to return")
    _common(s)
    s = _leaf(a, "add-messages", cmd_thread_add_messages, "Add messages to a thread")
    s.add_argument("thread_id")
    s.add_argument("--file", help='JSON/YAML file: {"messages": [{role, content, name?}]}')
    s.add_argument("--stdin", action="store_true", help="Read messages from stdin")
    s.add_argument("--batch", action="store_true", help="Batch processing for large imports")
    s.add_argument("--wait", action="store_true", help="Wait for batch processing to finish")
    _waiting(s)
    _common(s)
    s = _leaf(a, "context", cmd_thread_context, "Get thread context")
    s.add_argument("thread_id")
    _common(s)

    # graph
    a = _group(sub, "graph", "Manage graphs")
    s = _leaf(a, "list", cmd_graph_list, "List graphs")
    _paging(s)
    _common(s)
    s = _leaf(a, "create", cmd_graph_create, "Create a new graph")
    s.add_argument("graph_id")
    s.add_argument("--name")
    s.add_argument("--description")
    _common(s)
    s = _leaf(a, "delete", cmd_graph_delete, "Delete a graph")
    s.add_argument("graph_id")
    _force(s)
    _common(s)
    s = _leaf(a, "clone", cmd_graph_clone, "Clone a user or standalone graph")
    s.add_argument("--source-user", help="Source user ID (user graphs)")
    s.add_argument("--target-user", help="Target user ID (user graphs)")
    s.add_argument("--source-graph", help="Source graph ID (standalone graphs)")
    s.add_argument("--target-graph", help="Target graph ID (standalone graphs)")
    s.add_argument("--wait", action="store_true", help="Wait for the clone to complete")
    _waiting(s)
    _common(s)
    s = _leaf(a, "add", cmd_graph_add, "Add data to a graph")
    s.add_argument("graph_id", nargs="?")
    s.add_argument("--user", help="Add to a user graph instead of a standalone graph")
    s.add_argument("--type", choices=["text", "json", "message"], default="text")
    s.add_argument("--data", help="Inline data string")
    s.add_argument("--file", help="Path to data file")
    s.add_argument("--stdin", action="store_true", help="Read data from stdin")
    s.add_argument("--batch", action="store_true",
                   help='Batch mode: file holds {"episodes": [{type, data}]}')
    s.add_argument("--wait", action="store_true", help="Wait for ingestion to complete")
    _waiting(s)
    _common(s)
    s = _leaf(a, "search", cmd_graph_search, "Search a graph")
    s.add_argument("query")
    _owner_flags(s, "Search")
    s.add_argument("--scope", choices=["edges", "nodes", "episodes"], default="edges")
    s.add_argument("--limit", type=int, default=10, help="Maximum results")
    s.add_argument("--reranker", choices=["rrf", "mmr", "node_distance",
                                          "episode_mentions", "cross_encoder"])
    s.add_argument("--mmr-lambda", type=float, default=0.0,
                   help="MMR diversity/relevance balance (0-1)")
    s.add_argument("--min-score", type=float, default=0.0, help="Minimum relevance score")
    s.add_argument("--node-labels", help="Comma-separated node labels to include")
    s.add_argument("--edge-types", help="Comma-separated edge types to include")
    s.add_argument("--exclude-node-labels", help="Comma-separated node labels to exclude")
    s.add_argument("--exclude-edge-types", help="Comma-separated edge types to exclude")
    s.add_argument("--property-filter", action="append", metavar="NAME:OP:VALUE",
                   help="Property filter, e.g. age:>:30 or deleted_at:IS NULL (repeatable)")
    s.add_argument("--date-filter", action="append", metavar="FIELD:OP:DATE",
                   help="Date filter on created_at/valid_at/invalid_at/expired_at; "
                        "each one is OR'd with the others (repeatable)")
    _common(s)

    # node
    a = _group(sub, "node", "Manage graph nodes")
    s = _leaf(a, "list", cmd_node_list, "List nodes")
    _owner_flags(s, "List nodes")
    s.add_argument("--limit", type=int, default=50)
    s.add_argument("--cursor", help="UUID cursor (last UUID of the previous page)")
    _common(s)
    for name, func, help in (("get", cmd_node_get, "Get node details"),
                             ("edges", cmd_node_edges, "Get edges for a node"),
                             ("episodes", cmd_node_episodes, "Episodes that mention a node")):
        s = _leaf(a, name, func, help)
        s.add_argument("uuid")
        _common(s)

    # edge
    a = _group(sub, "edge", "Manage graph edges")
    s = _leaf(a, "list", cmd_edge_list, "List edges")
    _owner_flags(s, "List edges")
    s.add_argument("--limit", type=int, default=50)
    s.add_argument("--cursor", help="UUID cursor (last UUID of the previous page)")
    _common(s)
    s = _leaf(a, "get", cmd_edge_get, "Get edge details")
    s.add_argument("uuid")
    _common(s)
    s = _leaf(a, "delete", cmd_edge_delete, "Delete an edge")
    s.add_argument("uuid")
    _force(s)
    _common(s)

    # episode
    a = _group(sub, "episode", "Manage graph episodes")
    s = _leaf(a, "list", cmd_episode_list, "List episodes")
    _owner_flags(s, "List episodes")
    s.add_argument("--last", type=int, default=0, help="Last N episodes")
    _common(s)
    for name, func, help in (("get", cmd_episode_get, "Get episode details"),
                             ("mentions", cmd_episode_mentions,
                              "Nodes and edges mentioned in an episode")):
        s = _leaf(a, name, func, help)
        s.add_argument("uuid")
        _common(s)
    s = _leaf(a, "delete", cmd_episode_delete, "Delete an episode")
    s.add_argument("uuid")
    _force(s)
    _common(s)

    # ontology
    a = _group(sub, "ontology", "Manage graph ontology")
    s = _leaf(a, "get", cmd_ontology_get, "Get ontology definitions")
    _common(s)
    s = _leaf(a, "set", cmd_ontology_set, "Set custom entity and edge types")
    s.add_argument("--file", help="Ontology definition file (YAML or JSON)")
    _common(s)

    # task
    a = _group(sub, "task", "Get status of and wait for async tasks")
    s = _leaf(a, "get", cmd_task_get, "Get task status")
    s.add_argument("task_id")
    _common(s)
    s = _leaf(a, "wait", cmd_task_wait, "Wait for task completion")
    s.add_argument("task_id")
    _waiting(s)
    _common(s)

    return p


def main(argv: Iterable[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.version:
        print(f"zepctl {__version__}")
        return 0

    if not args.command:
        parser.print_help()
        return 0

    if getattr(args, "func", None) is None:
        args.group_parser.print_help()
        return 0

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        cfg = load_config(args.config)
        args.func(args, cfg)
    except ZepctlError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nAborted.", file=sys.stderr)
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
