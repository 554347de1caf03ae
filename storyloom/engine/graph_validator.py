"""
Structural validation of story graphs.

A story is playable when it has a start node, at least one ending, and every
node is reachable from the start, has an incoming choice (unless it is the
start) and either ends the story or offers a way forward.
"""

from collections import defaultdict, deque
from typing import Dict, Iterable, List, Optional, Sequence, Set

from storyloom.schemas.story import ChoiceData, NodeData, ValidationResult


def validate_structure(
    nodes: Sequence[NodeData], choices: Iterable[ChoiceData]
) -> ValidationResult:
    """
    Compute the structural health of a story graph.

    Pure and deterministic: the result depends only on the arguments, and
    every id list follows the order of ``nodes``.

    Args:
        nodes: All nodes of one story
        choices: All choices between those nodes

    Returns:
        ValidationResult describing every failed check
    """
    if not nodes:
        return ValidationResult(
            is_valid=False,
            has_start_node=False,
            has_ending_nodes=False,
        )

    node_ids = {node.id for node in nodes}
    outgoing: Dict[str, List[str]] = defaultdict(list)
    incoming_count: Dict[str, int] = defaultdict(int)

    for choice in choices:
        # Edges leaving the node set cannot vouch for anything inside it
        if choice.source_node_id not in node_ids or choice.target_node_id not in node_ids:
            continue
        outgoing[choice.source_node_id].append(choice.target_node_id)
        incoming_count[choice.target_node_id] += 1

    start_node = find_start_node(nodes)
    has_start_node = start_node is not None
    has_ending_nodes = any(node.is_ending for node in nodes)

    orphaned = [
        node.id
        for node in nodes
        if incoming_count[node.id] == 0 and not node.is_start
    ]

    reachable = (
        _reachable_from(start_node.id, outgoing) if start_node is not None else set()
    )
    unreachable = [node.id for node in nodes if node.id not in reachable]

    dead_ends = [
        node.id for node in nodes if not node.is_ending and not outgoing[node.id]
    ]

    return ValidationResult(
        is_valid=(
            has_start_node
            and has_ending_nodes
            and not orphaned
            and not unreachable
            and not dead_ends
        ),
        has_start_node=has_start_node,
        has_ending_nodes=has_ending_nodes,
        orphaned_node_ids=orphaned,
        unreachable_node_ids=unreachable,
        dead_end_node_ids=dead_ends,
    )


def validate_nodes(nodes: Sequence[NodeData]) -> ValidationResult:
    """Validate nodes that already carry their outgoing choices"""
    return validate_structure(nodes, [choice for node in nodes for choice in node.choices])


def find_start_node(nodes: Sequence[NodeData]) -> Optional[NodeData]:
    """Return the first node flagged as the start, if any"""
    for node in nodes:
        if node.is_start:
            return node
    return None


def _reachable_from(start_id: str, outgoing: Dict[str, List[str]]) -> Set[str]:
    visited = {start_id}
    queue = deque([start_id])
    while queue:
        current = queue.popleft()
        for target in outgoing.get(current, ()):
            if target not in visited:
                visited.add(target)
                queue.append(target)
    return visited


def summarize_violations(result: ValidationResult) -> List[str]:
    """
    Describe every failed check in a ValidationResult.

    Args:
        result: Output of validate_structure

    Returns:
        One human-readable line per failed check, empty when the graph is valid
    """
    violations: List[str] = []
    if not result.has_start_node:
        violations.append("Missing start node.")
    if not result.has_ending_nodes:
        violations.append("Missing ending nodes.")
    if result.orphaned_node_ids:
        violations.append(f"Found {len(result.orphaned_node_ids)} orphaned nodes.")
    if result.unreachable_node_ids:
        violations.append(
            f"Found {len(result.unreachable_node_ids)} unreachable nodes."
        )
    if result.dead_end_node_ids:
        violations.append(f"Found {len(result.dead_end_node_ids)} dead ends.")
    return violations
