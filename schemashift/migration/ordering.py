"""Dependency-aware ordering of migration operations."""

import heapq
import logging
from typing import Iterable

from schemashift.migration.models import MigrationOperation, MigrationOperationType
from schemashift.schema.models import SchemaSnapshot

logger = logging.getLogger(__name__)

# Operations run tier by tier. Within a tier ties sort by (table, type, detail key).
TIERS: list[tuple[MigrationOperationType, ...]] = [
    (MigrationOperationType.CREATE_TABLE,),
    (MigrationOperationType.ADD_COLUMN,),
    (MigrationOperationType.ADD_INDEX,),
    # a column must have its final type before a key can reference it
    (MigrationOperationType.MODIFY_COLUMN,),
    (MigrationOperationType.ADD_FOREIGN_KEY,),
    (MigrationOperationType.DROP_FOREIGN_KEY,),
    # dropping a column silently drops its indexes, so indexes go first
    (MigrationOperationType.DROP_INDEX,),
    (MigrationOperationType.DROP_COLUMN,),
    (MigrationOperationType.DROP_TABLE,),
]


def topological_order(nodes: Iterable[str], edges: Iterable[tuple[str, str]]) -> list[str]:
    """
    Order ``nodes`` so that for every ``(before, after)`` edge ``before``
    comes first.

    Ties are broken lexicographically. A cycle is broken by emitting the
    smallest remaining node, so the result always contains every node.
    """
    pending = set(nodes)
    successors: dict[str, set[str]] = {n: set() for n in pending}
    in_degree = {n: 0 for n in pending}
    for before, after in edges:
        if before == after or before not in pending or after not in pending:
            continue
        if after not in successors[before]:
            successors[before].add(after)
            in_degree[after] += 1

    ready = [n for n in pending if in_degree[n] == 0]
    heapq.heapify(ready)
    ordered: list[str] = []

    while pending:
        if not ready:
            node = min(pending)
            logger.warning("Dependency cycle involving %s; breaking it lexicographically", node)
        else:
            node = heapq.heappop(ready)
            if node not in pending:
                continue
        pending.discard(node)
        ordered.append(node)
        for succ in sorted(successors[node]):
            if succ not in pending:
                continue
            in_degree[succ] -= 1
            if in_degree[succ] == 0:
                heapq.heappush(ready, succ)

    return ordered


def order_operations(
    operations: list[MigrationOperation],
    current: SchemaSnapshot,
    desired: SchemaSnapshot,
) -> list[MigrationOperation]:
    """
    Lay out operations in dependency order.

    Created tables follow the desired foreign keys (referenced tables
    first). Dropped tables follow the current foreign keys in reverse
    (referencing tables first).
    """
    by_type: dict[MigrationOperationType, list[MigrationOperation]] = {}
    for op in operations:
        by_type.setdefault(op.type, []).append(op)

    ordered: list[MigrationOperation] = []
    for tier in TIERS:
        for op_type in tier:
            tier_ops = by_type.get(op_type, [])
            if op_type == MigrationOperationType.CREATE_TABLE:
                ordered.extend(_order_tables(tier_ops, desired, reverse=False))
            elif op_type == MigrationOperationType.DROP_TABLE:
                ordered.extend(_order_tables(tier_ops, current, reverse=True))
            else:
                ordered.extend(sorted(tier_ops, key=lambda op: op.sort_key))
    return ordered


def _order_tables(
    operations: list[MigrationOperation], snapshot: SchemaSnapshot, reverse: bool
) -> list[MigrationOperation]:
    by_table = {op.table: op for op in operations}
    edges = []
    for fk in snapshot.foreign_keys:
        if reverse:
            edges.append((fk.table_name, fk.referenced_table))
        else:
            edges.append((fk.referenced_table, fk.table_name))
    return [by_table[name] for name in topological_order(by_table, edges)]
