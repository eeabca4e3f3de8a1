from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Mapping

ALL_COLLECTIONS = "all"


def _edge(collection) -> tuple:
    if isinstance(collection, Mapping):
        return collection.get("id"), collection.get("parent_id")
    return collection.id, collection.parent_id


def _same_id(left, right) -> bool:
    return left == right or str(left) == str(right)


def build_children_map(collections: Iterable) -> dict:
    children_by_parent: dict = {}
    for collection in collections:
        collection_id, parent_id = _edge(collection)
        children_by_parent.setdefault(parent_id, []).append(collection_id)
    return children_by_parent


def is_all(collection_id) -> bool:
    if collection_id is None:
        return True
    text = str(collection_id).strip()
    return not text or text.lower() == ALL_COLLECTIONS


def resolve_collection_ids(collection_id, collections: Iterable) -> set | None:
    """Expand a collection selection into itself plus every descendant id.

    Returns ``None`` when no collection filter applies (``"all"`` or nothing
    selected). An id that is not among ``collections`` resolves to just
    ``{collection_id}``, which matches no bookmark downstream.
    """
    if is_all(collection_id):
        return None

    rows = list(collections)
    # Callers often pass the raw query-string value; align it with stored ids.
    for row in rows:
        row_id, _ = _edge(row)
        if _same_id(row_id, collection_id):
            collection_id = row_id
            break

    children_by_parent = build_children_map(rows)
    resolved = {collection_id}
    queue = deque([collection_id])
    while queue:
        current = queue.popleft()
        for child_id in children_by_parent.get(current, []):
            if child_id in resolved:
                continue
            resolved.add(child_id)
            queue.append(child_id)
    return resolved


def descendant_ids(collection_id, collections: Iterable) -> set:
    resolved = resolve_collection_ids(collection_id, collections) or set()
    return {item for item in resolved if not _same_id(item, collection_id)}


def subtree_bookmark_counts(collections: Iterable, direct_counts: Mapping) -> dict:
    rows = list(collections)
    children_by_parent = build_children_map(rows)
    totals: dict = {}

    for row in rows:
        root_id, _ = _edge(row)
        seen = {root_id}
        stack = [root_id]
        total = 0
        while stack:
            current = stack.pop()
            total += direct_counts.get(current, 0)
            for child_id in children_by_parent.get(current, []):
                if child_id not in seen:
                    seen.add(child_id)
                    stack.append(child_id)
        totals[root_id] = total
    return totals


def collection_tree(collections: Iterable, serialize=None) -> list[dict]:
    rows = list(collections)
    by_id = {_edge(row)[0]: row for row in rows}
    if serialize is None:
        serialize = _serialize

    children_by_parent: dict = {}
    for row in rows:
        collection_id, parent_id = _edge(row)
        if parent_id not in by_id:
            parent_id = None
        children_by_parent.setdefault(parent_id, []).append(row)
    for siblings in children_by_parent.values():
        siblings.sort(key=lambda row: (str(_name(row)).lower(), str(_edge(row)[0])))

    visited: set = set()

    def build(parent_id) -> list[dict]:
        nodes = []
        for row in children_by_parent.get(parent_id, []):
            collection_id, _ = _edge(row)
            if collection_id in visited:
                continue
            visited.add(collection_id)
            node = serialize(row)
            node["children"] = build(collection_id)
            nodes.append(node)
        return nodes

    tree = build(None)
    # Rows caught in a parent cycle are never reached from a root; surface them
    # at the top level instead of dropping them.
    for row in rows:
        collection_id, _ = _edge(row)
        if collection_id not in visited:
            visited.add(collection_id)
            node = serialize(row)
            node["children"] = build(collection_id)
            tree.append(node)
    return tree


def _serialize(row) -> dict:
    if isinstance(row, Mapping):
        return dict(row)
    return row.as_dict()


def _name(row) -> str:
    if isinstance(row, Mapping):
        return row.get("name") or ""
    return getattr(row, "name", "") or ""
