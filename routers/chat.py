from typing import List

from fastapi import APIRouter, Depends, Request

from chat_service import ChatService
from logging_config import get_logger
from schemas.chat import AckResponse, PostMessageRequest, UserRequest

logger = get_logger(__name__)

chat_router = APIRouter(tags=["chat"])


def get_chat_service(request: Request) -> ChatService:
    service = getattr(request.app.state, "chat_service", None)
    if service is None:
        raise RuntimeError("Chat service not initialized. Ensure lifespan sets app.state.chat_service.")
    return service


@chat_router.get("/messages")
async def list_messages(service: ChatService = Depends(get_chat_service)) -> List[dict]:
    return [message.to_wire() for message in service.list_messages()]


@chat_router.get("/users")
async def list_users(service: ChatService = Depends(get_chat_service)) -> List[str]:
    return service.list_users()


@chat_router.post("/user", response_model=AckResponse)
async def join(body: UserRequest, request: Request, service: ChatService = Depends(get_chat_service)):
    client_host = request.client.host if request.client else "unknown"
    logger.info(f"Join request for {body.user} from {client_host}")
    # UserAlreadyExists is turned into a 403 by the app's exception handlers
    service.join(body.user)
    return AckResponse(message="User joined")


@chat_router.delete("/user", response_model=AckResponse)
async def leave(body: UserRequest, request: Request, service: ChatService = Depends(get_chat_service)):
    client_host = request.client.host if request.client else "unknown"
    logger.info(f"Leave request for {body.user} from {client_host}")
    service.leave(body.user)
    return AckResponse(message="User removed")


@chat_router.post("/message", response_model=AckResponse)
async def post_message(body: PostMessageRequest, service: ChatService = Depends(get_chat_service)):
    service.post_message(body.user, body.msg)
    return AckResponse(message="Message sent")
