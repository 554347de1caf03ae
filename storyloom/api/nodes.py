"""
Node API endpoints.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from storyloom.api.deps import get_database
from storyloom.db.manager import DatabaseManager
from storyloom.schemas.story import NodeCreateRequest, NodeData, NodeUpdateRequest

router = APIRouter()


@router.get("/story/{story_id}")
def list_story_nodes(
    story_id: str, db: DatabaseManager = Depends(get_database)
) -> Dict[str, Any]:
    """All nodes of a story with their outgoing choices"""
    nodes = db.list_nodes_with_choices(story_id)
    return {
        "results": len(nodes),
        "nodes": [node.model_dump(mode="json") for node in nodes],
    }


@router.post("/story/{story_id}", response_model=NodeData, status_code=201)
def create_node(
    story_id: str,
    request: NodeCreateRequest,
    db: DatabaseManager = Depends(get_database),
):
    return db.create_node(story_id, request)


@router.get("/{node_id}", response_model=NodeData)
def get_node(node_id: str, db: DatabaseManager = Depends(get_database)):
    return db.get_node(node_id)


@router.put("/{node_id}", response_model=NodeData)
def update_node(
    node_id: str,
    request: NodeUpdateRequest,
    db: DatabaseManager = Depends(get_database),
):
    return db.update_node(node_id, request)


@router.delete("/{node_id}")
def delete_node(node_id: str, db: DatabaseManager = Depends(get_database)):
    """Delete a node and every choice leading to or from it"""
    db.delete_node(node_id)
    return {"id": node_id, "deleted": True}
