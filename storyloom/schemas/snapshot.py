"""
Snapshot format for published story versions.

A snapshot is the story record plus every node and each node's outgoing
choices, serialized as canonical JSON so the stored text never changes once
written.
"""

import hashlib
import json
from typing import Any, Dict

_CHOICE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["id", "source_node_id", "target_node_id", "text", "order", "conditions"],
    "properties": {
        "id": {"type": "string"},
        "source_node_id": {"type": "string"},
        "target_node_id": {"type": "string"},
        "text": {"type": "string"},
        "order": {"type": "integer"},
        "conditions": {"type": "object"},
    },
}

_NODE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["id", "story_id", "title", "content", "is_ending", "metadata", "choices"],
    "properties": {
        "id": {"type": "string"},
        "story_id": {"type": "string"},
        "title": {"type": "string"},
        "content": {"type": "string"},
        "is_ending": {"type": "boolean"},
        "metadata": {"type": "object"},
        "position_x": {"type": "integer"},
        "position_y": {"type": "integer"},
        "choices": {"type": "array", "items": _CHOICE_SCHEMA},
    },
}

SNAPSHOT_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["id", "title", "description", "status", "metadata", "nodes"],
    "properties": {
        "id": {"type": "string"},
        "title": {"type": "string"},
        "description": {"type": "string"},
        "status": {"enum": ["DRAFT", "PUBLISHED", "ARCHIVED"]},
        "genres": {"type": "array", "items": {"type": "string"}},
        "metadata": {"type": "object"},
        "nodes": {"type": "array", "items": _NODE_SCHEMA},
    },
}


def canonical_json(payload: Dict[str, Any]) -> str:
    """Serialize a snapshot deterministically (sorted keys, no whitespace)"""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def snapshot_checksum(snapshot_text: str) -> str:
    """SHA-256 hex digest of the canonical snapshot text"""
    return hashlib.sha256(snapshot_text.encode("utf-8")).hexdigest()
