from uuid import uuid4

from fastapi import APIRouter, Depends

from scanform.entities import Collections
from scanform.errors import ValidationError
from scanform.models import IdsIn, NameIn, User
from scanform.routers.common import clamp_limit, dump, get_collections, ok, page_payload

router = APIRouter(
    prefix="/api/users",
    tags=["Users"],
)


@router.get("")
async def list_users(
    cursor: str | None = None,
    limit: int | None = None,
    collections: Collections = Depends(get_collections),
):
    await collections.users.ensure_seed()
    page = await collections.users.list(cursor, clamp_limit(limit))
    return ok(page_payload(page.items, page.next_cursor))


@router.post("")
async def create_user(body: NameIn, collections: Collections = Depends(get_collections)):
    name = (body.name or "").strip()
    if not name:
        raise ValidationError("name required")
    user = await collections.users.create(User(id=str(uuid4()), name=name))
    return ok(dump(user))


@router.delete("/{user_id}")
async def delete_user(user_id: str, collections: Collections = Depends(get_collections)):
    return ok({"id": user_id, "deleted": await collections.users.delete(user_id)})


@router.post("/deleteMany")
async def delete_users(body: IdsIn, collections: Collections = Depends(get_collections)):
    ids = [item for item in body.ids or [] if isinstance(item, str)]
    if not ids:
        raise ValidationError("ids required")
    results = await collections.users.delete_many(ids)
    return ok({"deletedCount": sum(results.values()), "ids": ids})
