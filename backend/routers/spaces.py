"""Spaces API router."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Header, HTTPException, Request

from backend.errors import ForbiddenError
from backend.models import Space, SpaceCreateRequest, SpaceListResponse, space_model
from backend.routers.common import domain_errors, get_services

spaces_router = APIRouter(prefix="/api/spaces", tags=["spaces"])
logger = logging.getLogger("luna.spaces")


@spaces_router.get("", response_model=SpaceListResponse)
async def list_spaces(
    request: Request,
    include_archived: bool = False,
    user_id: str = Header(..., alias="X-User-Id"),
):
    """Owned spaces, spaces shared with the caller and ghost parents (for breadcrumbs)."""
    services = get_services(request)
    user = await services.users.get_by_id(user_id)
    if not user:
        raise HTTPException(status_code=404, detail=f"User {user_id} not found")

    unread = await services.unread.unread_counts_by_space(user_id)
    owned = await services.spaces.list_owned(user_id, include_archived=include_archived)
    owned_ids = {s["id"] for s in owned}

    names = [value for value in (user.get("email"), user.get("name")) if value]
    shared_rows = {s["id"]: s for s in await services.spaces.list_addressed_to(names, user_id)}
    linked_ids = {link["space_id"] for link in await services.chats.list_user_chat_links(user_id)}
    for space in await services.spaces.get_many(sorted(linked_ids - owned_ids - set(shared_rows))):
        shared_rows[space["id"]] = space
    shared = [
        s for s in shared_rows.values()
        if s["id"] not in owned_ids and (include_archived or not s.get("archived"))
    ]

    ghost_ids = await services.guard.ghost_parents_for(user_id)
    ghosts = await services.spaces.get_many(sorted(ghost_ids - set(shared_rows)))

    return SpaceListResponse(
        owned=[space_model(s, unread=unread.get(s["id"], 0)) for s in owned],
        shared=[space_model(s, unread=unread.get(s["id"], 0)) for s in shared],
        ghostParents=[space_model(s, is_ghost=True) for s in ghosts],
    )


@spaces_router.post("", response_model=Space)
async def create_space(
    req: SpaceCreateRequest,
    request: Request,
    user_id: str = Header(..., alias="X-User-Id"),
):
    services = get_services(request)
    with domain_errors():
        if not await services.users.get_by_id(user_id):
            raise ForbiddenError("Unknown user")
        if req.category == "user" and req.parentIds:
            raise ValueError("Direct spaces cannot have parents")
        parent_ids = list(dict.fromkeys(req.parentIds))
        found = {p["id"] for p in await services.spaces.get_many(parent_ids)}
        missing = [p for p in parent_ids if p not in found]
        if missing:
            raise ValueError(f"Unknown parent space(s): {', '.join(missing)}")
        for parent_id in parent_ids:
            if not await services.guard.may_view(user_id, parent_id):
                raise ForbiddenError(f"You do not have access to parent space {parent_id}")

        space = await services.spaces.create({
            "user_id": user_id,
            "name": req.name.strip(),
            "category": req.category,
            "parent_ids": parent_ids,
            "external_ref": req.externalRef or None,
        })
    logger.info("Created %s space %s for %s", space["category"], space["id"], user_id)
    return space_model(space)


@spaces_router.get("/{space_id}", response_model=Space)
async def get_space(
    space_id: str,
    request: Request,
    user_id: str = Header(..., alias="X-User-Id"),
):
    services = get_services(request)
    space = await services.spaces.get_by_id(space_id)
    if not space:
        raise HTTPException(status_code=404, detail=f"Space {space_id} not found")
    if not await services.guard.may_view(user_id, space_id):
        raise HTTPException(status_code=403, detail="You do not have access to this space")
    return space_model(space, is_ghost=await services.guard.is_ghost_parent(user_id, space_id))
