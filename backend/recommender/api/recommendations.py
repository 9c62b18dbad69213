from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from recommender.core.database import get_db
from recommender.schemas import RecommendationRequest
from recommender.services.backend import RecommendationBackend, get_backend

router = APIRouter()


def _serialize(backend: RecommendationBackend, result: Dict[str, List[Any]]) -> Dict[str, List[Dict[str, Any]]]:
    payload = {}
    for key, entities in result.items():
        item = backend.registry.get(key)
        payload[key] = [item.project_fields(entity) for entity in entities] if item else []
    return payload


def _build_request(backend: RecommendationBackend, user_id: Optional[int], items: List[str], limit: Optional[int]) -> RecommendationRequest:
    unknown = [key for key in items if key not in backend.registry]
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown items: {', '.join(unknown)}")
    return RecommendationRequest(user_id=user_id, item_keys=[key.lower() for key in items], limit=limit)


@router.get("/suggest")
def suggest(
    user_id: Optional[int] = Query(None, description="User to suggest items for; anonymous gets empty lists"),
    items: List[str] = Query(..., description="Item keys, e.g. activity"),
    limit: Optional[int] = Query(None, description="Per-item override of the configured maximum"),
    backend: RecommendationBackend = Depends(get_backend),
    db: Session = Depends(get_db),
) -> Dict[str, List[Dict[str, Any]]]:
    """
    Items similar to the ones the user is already related to.
    """
    request = _build_request(backend, user_id, items, limit)
    return _serialize(backend, backend.suggest(request.user_id, request.item_keys, request.limit, session=db))


@router.get("/top")
def top_items(
    items: List[str] = Query(...),
    user_id: Optional[int] = Query(None, description="Exclude items this user already has"),
    limit: Optional[int] = Query(None),
    backend: RecommendationBackend = Depends(get_backend),
    db: Session = Depends(get_db),
) -> Dict[str, List[Dict[str, Any]]]:
    """
    Most popular items, ties broken by weight.
    """
    request = _build_request(backend, user_id, items, limit)
    return _serialize(backend, backend.get_top_items(request.item_keys, request.user_id, request.limit, session=db))


@router.get("/weight")
def items_by_weight(
    items: List[str] = Query(...),
    user_id: Optional[int] = Query(None),
    limit: Optional[int] = Query(None),
    backend: RecommendationBackend = Depends(get_backend),
    db: Session = Depends(get_db),
) -> Dict[str, List[Dict[str, Any]]]:
    request = _build_request(backend, user_id, items, limit)
    return _serialize(backend, backend.get_items_by_weight(request.item_keys, request.user_id, request.limit, session=db))


@router.get("/health")
def health(backend: RecommendationBackend = Depends(get_backend)) -> Dict[str, Any]:
    return backend.health().model_dump()
