from uuid import uuid4

from fastapi import APIRouter, Depends

from scanform.entities import Collections, EntityCollection
from scanform.errors import NotFound, ValidationError
from scanform.models import Chat, ChatMessage, IdsIn, MessageIn, TitleIn
from scanform.routers.common import clamp_limit, dump, get_collections, ok, page_payload

router = APIRouter(
    prefix="/api/chats",
    tags=["Chats"],
)


async def list_messages(chats: EntityCollection[Chat], chat_id: str) -> list[ChatMessage]:
    chat = await chats.get(chat_id)
    if chat is None:
        raise NotFound("chat not found")
    return chat.messages


async def send_message(
    chats: EntityCollection[Chat], chat_id: str, user_id: str, text: str
) -> ChatMessage:
    message = ChatMessage(id=str(uuid4()), chatId=chat_id, userId=user_id, text=text)
    await chats.mutate(
        chat_id,
        lambda chat: chat.model_copy(update={"messages": [*chat.messages, message]}),
    )
    return message


@router.get("")
async def list_chats(
    cursor: str | None = None,
    limit: int | None = None,
    collections: Collections = Depends(get_collections),
):
    await collections.chats.ensure_seed()
    page = await collections.chats.list(cursor, clamp_limit(limit))
    return ok(page_payload(page.items, page.next_cursor))


@router.post("")
async def create_chat(body: TitleIn, collections: Collections = Depends(get_collections)):
    title = (body.title or "").strip()
    if not title:
        raise ValidationError("title required")
    created = await collections.chats.create(Chat(id=str(uuid4()), title=title))
    return ok({"id": created.id, "title": created.title})


@router.delete("/{chat_id}")
async def delete_chat(chat_id: str, collections: Collections = Depends(get_collections)):
    return ok({"id": chat_id, "deleted": await collections.chats.delete(chat_id)})


@router.post("/deleteMany")
async def delete_chats(body: IdsIn, collections: Collections = Depends(get_collections)):
    ids = [item for item in body.ids or [] if isinstance(item, str)]
    if not ids:
        raise ValidationError("ids required")
    results = await collections.chats.delete_many(ids)
    return ok({"deletedCount": sum(results.values()), "ids": ids})


@router.get("/{chat_id}/messages")
async def get_messages(chat_id: str, collections: Collections = Depends(get_collections)):
    messages = await list_messages(collections.chats, chat_id)
    return ok([dump(message) for message in messages])


@router.post("/{chat_id}/messages")
async def post_message(
    chat_id: str,
    body: MessageIn,
    collections: Collections = Depends(get_collections),
):
    text = (body.text or "").strip()
    if not body.userId or not text:
        raise ValidationError("userId and text required")
    if not await collections.chats.exists(chat_id):
        raise NotFound("chat not found")
    message = await send_message(collections.chats, chat_id, body.userId, text)
    return ok(dump(message))
