"""Encrypted conversation API routes.

- POST /conversations: Insert-or-ignore one encrypted conversation
- GET /conversations: One replication page after a cursor

All routes require Authorization: Bearer <token> and X-Org-Slug.
Routes are transport-only: each calls exactly one service function.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from aica.api.deps import get_db, get_principal
from aica.auth.middleware import OrgPrincipal
from aica.config import MAX_PAGE_SIZE, get_settings
from aica.schemas.conversation import ImportConversationRequest
from aica.services import conversations as conversations_service

router = APIRouter(tags=["conversations"])


@router.post("/conversations", status_code=201)
def import_conversation(
    body: ImportConversationRequest,
    principal: Annotated[OrgPrincipal, Depends(get_principal)],
    db: Annotated[Session, Depends(get_db)],
    response: Response,
) -> dict:
    """Store an encrypted conversation.

    Returns:
        201 Created (first insert): {"id": "..."}
        200 OK (already present): {"deduplicated": true}

    Errors:
        E_INVALID_REQUEST (400): Missing or malformed fields.
        E_UNAUTHENTICATED (401): Bad credentials.
    """
    result, is_created = conversations_service.import_conversation(
        db=db,
        org_id=principal.org_id,
        nonce_b64=body.nonce,
        ciphertext_b64=body.ciphertext,
        platform=body.platform,
        external_id=body.external_id,
    )

    if not is_created:
        response.status_code = 200
        return {"deduplicated": True}

    return {"id": result.id}


@router.get("/conversations")
def list_conversations(
    principal: Annotated[OrgPrincipal, Depends(get_principal)],
    db: Annotated[Session, Depends(get_db)],
    after: str | None = Query(default=None, description="imported_at cursor (exclusive)"),
    limit: int = Query(default=MAX_PAGE_SIZE, ge=1, description="Page size, clamped to 100"),
) -> dict:
    """List encrypted conversations imported after a cursor.

    Returns:
        {"conversations": [...], "has_more": bool}, ascending by imported_at.

    Errors:
        E_INVALID_CURSOR (400): after is not an ISO-8601 timestamp.
        E_UNAUTHENTICATED (401): Bad credentials.
    """
    page = conversations_service.list_conversations_after(
        db=db,
        org_id=principal.org_id,
        after=after,
        limit=min(limit, get_settings().max_page_size),
    )
    return page.model_dump(mode="json")
