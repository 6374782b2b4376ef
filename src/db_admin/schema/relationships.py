"""Foreign-key relationship discovery.

Walks foreign keys breadth-first from a table, up to three hops, in two
directions: *parents* (tables the current table references) and
*children* (tables that reference it). Each ``(table, direction)`` pair
is expanded at most once, so cyclic schemas terminate, and edges that
loop back into the start table past the first hop are not reported.

Usage:
    mapper = RelationshipMapper(introspector, cache, registry)
    relationships = await mapper.get_relationships("chapters", depth=2)
    path = await mapper.find_path("scenes", "series")
"""

import logging
from collections import deque
from typing import Any

from db_admin.errors import ValidationError
from db_admin.schema.cache import SchemaCache
from db_admin.schema.introspector import SchemaIntrospector
from db_admin.schema.models import RelationshipEdge, RelationshipMap
from db_admin.whitelist import WhitelistRegistry

logger = logging.getLogger(__name__)

MAX_DEPTH = 3
MAX_PATH_DEPTH = 5


class RelationshipMapper:
    """Discovers and caches FK relationships.

    Args:
        introspector: Source of raw foreign-key metadata.
        cache: Shared schema cache; maps are cached per ``(table, depth)``.
        registry: When given, edges leading to tables outside the
            whitelist are omitted.
    """

    def __init__(
        self,
        introspector: SchemaIntrospector,
        cache: SchemaCache,
        registry: WhitelistRegistry | None = None,
    ) -> None:
        self._introspector = introspector
        self._cache = cache
        self._registry = registry

    def _reachable(self, table: str) -> bool:
        return self._registry is None or table in self._registry

    async def _keys(self, table: str, direction: str) -> list[dict]:
        key = self._cache.generate_key(table, f"fk_{direction}")
        if direction == "parents":
            loader = lambda: self._introspector.get_parent_keys(table)  # noqa: E731
        else:
            loader = lambda: self._introspector.get_child_keys(table)  # noqa: E731
        rows, _ = await self._cache.get_or_load(key, loader)
        return rows

    async def get_relationships(
        self,
        table: str,
        depth: int = 1,
        refresh: bool = False,
    ) -> tuple[RelationshipMap, bool]:
        """Return ``(relationship map, served_from_cache)`` for ``table``.

        ``refresh`` drops cached entries for ``table`` and every cached
        foreign-key lookup before walking the keys again.

        Raises:
            ValidationError: If ``depth`` is not within 1..3.
        """
        if isinstance(depth, bool) or not isinstance(depth, int) or not 1 <= depth <= MAX_DEPTH:
            raise ValidationError(f"Depth must be between 1 and {MAX_DEPTH}", data={"depth": depth})

        if refresh:
            # Nested hops read other tables' foreign keys too
            self._cache.invalidate_table(table)
            self._cache.invalidate_pattern(r"^fk_(parents|children):")
        key = self._cache.generate_key(table, "relationships", {"depth": depth})
        return await self._cache.get_or_load(
            key, lambda: self._traverse(table, depth), refresh=refresh
        )

    async def _traverse(self, table: str, depth: int) -> RelationshipMap:
        result = RelationshipMap(table=table, depth=depth)
        visited: set[tuple[str, str]] = set()
        queue: deque[tuple[str, str, int]] = deque(
            [(table, "parents", 1), (table, "children", 1)]
        )

        while queue:
            current, direction, level = queue.popleft()
            if (current, direction) in visited:
                continue
            visited.add((current, direction))

            for row in await self._keys(current, direction):
                other = row["references_table"] if direction == "parents" else row["table_name"]
                if not self._reachable(other):
                    continue
                # Deeper edges leading back to the start table close a cycle
                if level > 1 and other == table:
                    continue

                edge = RelationshipEdge(
                    constraint_name=row["constraint_name"],
                    table=row["table_name"],
                    column=row["column_name"],
                    references_table=row["references_table"],
                    references_column=row["references_column"],
                    depth=level,
                    via_table=current if level > 1 else None,
                    on_delete=row.get("delete_rule"),
                )
                if direction == "parents":
                    result.parents.append(edge)
                else:
                    result.children.append(edge)

                if level < depth and (other, direction) not in visited and other != table:
                    queue.append((other, direction, level + 1))

        logger.debug(
            "Mapped %s (depth %d): %d parents, %d children",
            table, depth, len(result.parents), len(result.children),
        )
        return result

    async def get_relationship_graph(self, table: str, depth: int = 1) -> dict[str, Any]:
        """Node/edge view of ``get_relationships`` for visualization."""
        relationships, _ = await self.get_relationships(table, depth)
        nodes = {table}
        edges: list[dict[str, Any]] = []
        for edge in [*relationships.parents, *relationships.children]:
            nodes.update({edge.table, edge.references_table})
            edges.append({
                "from": edge.table,
                "to": edge.references_table,
                "column": edge.column,
                "references_column": edge.references_column,
                "constraint": edge.constraint_name,
                "depth": edge.depth,
            })
        return {"center": table, "nodes": sorted(nodes), "edges": edges}

    async def find_path(
        self,
        from_table: str,
        to_table: str,
        max_depth: int = MAX_DEPTH,
    ) -> list[RelationshipEdge] | None:
        """Shortest FK path between two tables, following keys in either direction.

        Returns:
            Edges in traversal order, ``[]`` when both tables are the same,
            or ``None`` if no path exists within ``max_depth`` hops.
        """
        if isinstance(max_depth, bool) or not isinstance(max_depth, int) or not 1 <= max_depth <= MAX_PATH_DEPTH:
            raise ValidationError(
                f"max_depth must be between 1 and {MAX_PATH_DEPTH}", data={"max_depth": max_depth}
            )
        if from_table == to_table:
            return []

        visited = {from_table}
        queue: deque[tuple[str, list[RelationshipEdge]]] = deque([(from_table, [])])

        while queue:
            current, path = queue.popleft()
            if len(path) >= max_depth:
                continue

            for direction in ("parents", "children"):
                for row in await self._keys(current, direction):
                    other = row["references_table"] if direction == "parents" else row["table_name"]
                    if other in visited or not self._reachable(other):
                        continue
                    edge = RelationshipEdge(
                        constraint_name=row["constraint_name"],
                        table=row["table_name"],
                        column=row["column_name"],
                        references_table=row["references_table"],
                        references_column=row["references_column"],
                        depth=len(path) + 1,
                        via_table=current if path else None,
                        on_delete=row.get("delete_rule"),
                    )
                    if other == to_table:
                        return [*path, edge]
                    visited.add(other)
                    queue.append((other, [*path, edge]))

        return None
