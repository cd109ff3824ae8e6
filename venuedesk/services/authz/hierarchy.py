from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from venuedesk.core.errors import HierarchyViolation
from venuedesk.persistence.repos import users as users_repo
from venuedesk.services.auth.identity import Identity


logger = logging.getLogger(__name__)


class _Node(Protocol):
    id: str
    reports_to: str | None
    invited_by: str | None


def parent_of(node: _Node) -> str | None:
    # reports_to wins; invited_by is the fallback edge for members never re-parented.
    return node.reports_to or node.invited_by


def is_ancestor(nodes: Mapping[str, _Node], ancestor_id: str, target_id: str) -> bool:
    """Walk up from ``target_id`` and report whether ``ancestor_id`` is reached.

    Only nodes present in ``nodes`` are walked through. A repeated node ends the
    walk, so cyclic chains terminate without granting access.
    """
    visited: set[str] = set()
    current = nodes.get(target_id)
    while current is not None and current.id not in visited:
        visited.add(current.id)
        parent_id = parent_of(current)
        if parent_id is None:
            return False
        if parent_id == ancestor_id:
            return True
        current = nodes.get(parent_id)
    return False


def subordinate_ids(nodes: Iterable[_Node], root_id: str) -> set[str]:
    # Transitive reports of root_id; the visited set doubles as the cycle guard.
    children: dict[str, list[str]] = {}
    for node in nodes:
        parent_id = parent_of(node)
        if parent_id is not None:
            children.setdefault(parent_id, []).append(node.id)
    found: set[str] = set()
    stack = list(children.get(root_id, []))
    while stack:
        node_id = stack.pop()
        if node_id in found or node_id == root_id:
            continue
        found.add(node_id)
        stack.extend(children.get(node_id, []))
    return found


def build_tree(entries: list[dict[str, Any]], root_id: str) -> list[dict[str, Any]]:
    """Nest manager entries under their parents.

    Entries whose parent is ``root_id`` or outside the list become roots, as do
    entries caught in a reporting cycle. Each entry must carry ``id`` and
    ``parent_id``.
    """
    by_id = {entry["id"]: {**entry, "children": []} for entry in entries}

    def _attached(entry_id: str) -> bool:
        # True when the chain above entry_id ends without revisiting a node.
        seen = {entry_id}
        parent_id = by_id[entry_id].get("parent_id")
        while parent_id and parent_id != root_id and parent_id in by_id:
            if parent_id in seen:
                return False
            seen.add(parent_id)
            parent_id = by_id[parent_id].get("parent_id")
        return True

    tree: list[dict[str, Any]] = []
    for entry in entries:
        node = by_id[entry["id"]]
        parent_id = entry.get("parent_id")
        if (
            parent_id
            and parent_id != root_id
            and parent_id in by_id
            and _attached(entry["id"])
        ):
            by_id[parent_id]["children"].append(node)
        else:
            tree.append(node)
    return tree


async def require_ancestor(session: AsyncSession, caller: Identity, target_id: str) -> None:
    """Ensure ``target_id`` reports to the caller, directly or transitively.

    Operators and account owners manage everyone in scope and pass without a
    lookup. Scoped members must appear above the target in the chain built from
    live scoped members of their own account.
    """
    if caller.is_top_level:
        return
    members = await users_repo.list_live_members(session, account_id=caller.account_id)
    nodes = {member.id: member for member in members}
    if not is_ancestor(nodes, caller.id, target_id):
        logger.info("hierarchy_violation caller_id=%s target_id=%s", caller.id, target_id)
        raise HierarchyViolation("You can only manage users who report to you in the hierarchy.")
