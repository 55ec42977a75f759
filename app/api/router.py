from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from fastapi import APIRouter, Depends


# Error responses every extraction router can return; bodies come from ServiceError.to_dict()
DEFAULT_ERROR_RESPONSES: Dict[int, Dict[str, Any]] = {
    401: {"description": "Missing or invalid credentials"},
    404: {"description": "Job not found for this user"},
    409: {"description": "Job is not in a status that allows this transition"},
    422: {"description": "Request validation failed"},
    429: {"description": "Rate limited or monthly AI quota exhausted"},
    500: {"description": "Internal Server Error"},
}


def create_router(
    *,
    name: Optional[str] = None,
    dependencies: Optional[Sequence[Depends]] = None,
    default_responses: Optional[Dict[int, Dict[str, Any]]] = None,
) -> APIRouter:
    """APIRouter with the shared error-response documentation attached.

    Args:
        name: Logical router name, kept on the router for introspection.
        dependencies: Dependencies applied to every route of the router.
        default_responses: Replaces DEFAULT_ERROR_RESPONSES when given.
    """
    router = APIRouter(
        dependencies=list(dependencies) if dependencies else None,
        responses=(default_responses or DEFAULT_ERROR_RESPONSES),
    )
    if name:
        router.name = name
    return router
