"""
Choice API endpoints.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from storyloom.api.deps import get_database
from storyloom.db.manager import DatabaseManager
from storyloom.schemas.story import ChoiceCreateRequest, ChoiceData, ChoiceUpdateRequest

router = APIRouter()


@router.get("/node/{node_id}")
def list_node_choices(
    node_id: str, db: DatabaseManager = Depends(get_database)
) -> Dict[str, Any]:
    """Choices leaving a node, in display order"""
    choices = db.list_choices(node_id)
    return {
        "results": len(choices),
        "choices": [choice.model_dump(mode="json") for choice in choices],
    }


@router.post("/node/{node_id}", response_model=ChoiceData, status_code=201)
def create_choice(
    node_id: str,
    request: ChoiceCreateRequest,
    db: DatabaseManager = Depends(get_database),
):
    """Add a choice leaving the node; omitted order appends it after the others"""
    return db.create_choice(node_id, request)


@router.get("/{choice_id}", response_model=ChoiceData)
def get_choice(choice_id: str, db: DatabaseManager = Depends(get_database)):
    return db.get_choice(choice_id)


@router.put("/{choice_id}", response_model=ChoiceData)
def update_choice(
    choice_id: str,
    request: ChoiceUpdateRequest,
    db: DatabaseManager = Depends(get_database),
):
    return db.update_choice(choice_id, request)


@router.delete("/{choice_id}")
def delete_choice(choice_id: str, db: DatabaseManager = Depends(get_database)):
    db.delete_choice(choice_id)
    return {"id": choice_id, "deleted": True}
