import asyncio
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request as HTTPRequest, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr
from starlette.concurrency import run_in_threadpool

import auth
import config
import database
import messaging
import reconcile
import repository
from derived import REQUEST_VIEWS, compute_stats, filter_requests, request_status
from errors import AidLinkError, ConflictError, InvalidFieldError
from inbox import Inbox
from schemas import Identity, Status

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="AidLink API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AidLinkError)
async def aidlink_error_handler(request: HTTPRequest, exc: AidLinkError):
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


# Helpers
class InsertResponse(BaseModel):
    id: str


class SendResponse(BaseModel):
    id: Optional[str] = None


@app.get("/")
def read_root():
    return {"message": "AidLink API is running"}


# ---------------------------
# Passwordless Auth (Magic Code)
# ---------------------------

class RequestCodeBody(BaseModel):
    email: EmailStr


class VerifyCodeBody(BaseModel):
    email: EmailStr
    code: str
    display_name: Optional[str] = None
    photo_url: Optional[str] = None


class VerifyResponse(BaseModel):
    token: str
    identity: Identity


@app.post("/api/auth/request-code")
def request_code(payload: RequestCodeBody):
    code = auth.request_code(str(payload.email).lower())
    resp = {"status": "ok", "message": "Code sent"}
    if config.DEMO_MODE:
        resp["debug_code"] = code
    return resp


@app.post("/api/auth/verify", response_model=VerifyResponse)
def verify_code(payload: VerifyCodeBody):
    email = str(payload.email).lower()
    if not auth.consume_code(email, payload.code):
        raise HTTPException(status_code=401, detail="Invalid or expired code")
    token, identity = auth.sign_in(email, payload.display_name, payload.photo_url)
    return VerifyResponse(token=token, identity=identity)


def _bearer(authorization: Optional[str]) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return authorization.split(" ", 1)[1]


def current_identity(authorization: Optional[str] = Header(default=None)) -> Identity:
    identity = auth.identity_for_token(_bearer(authorization))
    if identity is None:
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    return identity


@app.get("/api/me", response_model=Identity)
def me(identity: Identity = Depends(current_identity)):
    return identity


@app.post("/api/auth/sign-out")
def sign_out(authorization: Optional[str] = Header(default=None)):
    auth.sign_out(_bearer(authorization))
    return {"status": "ok"}


# ---------------------------
# Requests
# ---------------------------

class RequestCreateBody(BaseModel):
    title: Optional[str] = ""
    description: Optional[str] = ""
    category: Optional[str] = None
    urgency: Optional[str] = None
    contact: Optional[str] = None
    requested_at: Optional[str] = None


class StatusBody(BaseModel):
    status: Status


def _check_view(view: str) -> str:
    if view not in REQUEST_VIEWS:
        raise InvalidFieldError(f"Unknown view: {view}")
    return view


@app.post("/api/requests", response_model=InsertResponse)
def create_request(payload: RequestCreateBody, identity: Identity = Depends(current_identity)):
    return {"id": repository.create(identity, payload.model_dump())}


@app.get("/api/requests")
def list_requests(view: str = "all", search: str = "", identity: Identity = Depends(current_identity)):
    return filter_requests(repository.list_all(), _check_view(view), search)


@app.get("/api/requests/mine")
def list_my_requests(view: str = "all", identity: Identity = Depends(current_identity)):
    reconcile.reconcile_owner_requests(identity)
    mine = repository.list_by_owner(identity.uid)
    return {"requests": filter_requests(mine, _check_view(view)), "stats": compute_stats(mine)}


@app.get("/api/requests/{request_id}")
def get_request(request_id: str, identity: Identity = Depends(current_identity)):
    return repository.get(request_id)


@app.post("/api/requests/{request_id}/status")
def set_request_status(request_id: str, payload: StatusBody, identity: Identity = Depends(current_identity)):
    request = repository.get(request_id)
    if request.get("requester_id") != identity.uid:
        raise HTTPException(status_code=403, detail="Only the requester can change the status")
    repository.set_status(request_id, payload.status)
    return {"ok": True}


@app.post("/api/requests/{request_id}/volunteer")
def volunteer(request_id: str, identity: Identity = Depends(current_identity)):
    request = repository.get(request_id)
    if request.get("requester_email") == identity.email:
        raise InvalidFieldError("You cannot volunteer for your own request")
    current = request.get("volunteer_email")
    if current and current != identity.email:
        raise ConflictError("Request already has a volunteer")
    if not current and request_status(request) != "pending":
        raise ConflictError("Only pending requests can be volunteered for")
    repository.set_volunteer(request_id, identity.email)
    chat_id = reconcile.ensure_chat_exists({**request, "volunteer_email": identity.email})
    return {"ok": True, "chat_id": chat_id}


@app.get("/api/dashboard")
def dashboard(identity: Identity = Depends(current_identity)):
    return compute_stats(repository.list_all())


# ---------------------------
# Chats and Boards
# ---------------------------

class MessageBody(BaseModel):
    text: Optional[str] = ""


class BoardCreateBody(BaseModel):
    title: Optional[str] = ""
    description: Optional[str] = ""


@app.get("/api/chats")
def list_chats(identity: Identity = Depends(current_identity)):
    reconcile.reconcile_owner_requests(identity)
    return messaging.list_rooms("chats", identity)


def _require_member(kind: str, room_id: str, identity: Identity) -> dict:
    room = messaging.get_room(kind, room_id)
    if messaging.room_kind(kind).members_only and identity.email not in room.get("participants", []):
        raise HTTPException(status_code=403, detail="Not a participant")
    return room


@app.get("/api/chats/{chat_id}/messages")
def list_chat_messages(chat_id: str, identity: Identity = Depends(current_identity)):
    _require_member("chats", chat_id, identity)
    return messaging.list_messages("chats", chat_id)


@app.post("/api/chats/{chat_id}/messages", response_model=SendResponse)
def post_chat_message(chat_id: str, payload: MessageBody, identity: Identity = Depends(current_identity)):
    return {"id": messaging.send_message("chats", chat_id, identity, payload.text)}


@app.get("/api/boards")
def list_boards(identity: Identity = Depends(current_identity)):
    return messaging.list_rooms("boards", identity)


@app.post("/api/boards")
def create_board(payload: BoardCreateBody, identity: Identity = Depends(current_identity)):
    return messaging.create_board(identity, payload.title, payload.description)


@app.post("/api/boards/{board_id}/join")
def join_board(board_id: str, identity: Identity = Depends(current_identity)):
    return {"participants": messaging.join_board(board_id, identity)}


@app.get("/api/boards/{board_id}/messages")
def list_board_messages(board_id: str, identity: Identity = Depends(current_identity)):
    messaging.get_room("boards", board_id)
    return messaging.list_messages("boards", board_id)


@app.post("/api/boards/{board_id}/messages", response_model=SendResponse)
def post_board_message(board_id: str, payload: MessageBody, identity: Identity = Depends(current_identity)):
    return {"id": messaging.send_message("boards", board_id, identity, payload.text)}


# ---------------------------
# Realtime (WebSocket)
# ---------------------------

def _timezone(name: Optional[str]):
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


async def _pump(websocket: WebSocket, events: asyncio.Queue):
    while True:
        event = await events.get()
        await websocket.send_json(jsonable_encoder(event))


async def _reconcile_periodically(identity: Identity):
    while True:
        await asyncio.sleep(config.RECONCILE_INTERVAL_SECONDS)
        try:
            await run_in_threadpool(reconcile.reconcile_owner_requests, identity)
        except Exception:
            logger.exception("Chat reconciliation for %s failed", identity.email)


def _error_event(status: int, detail: str) -> Dict[str, Any]:
    return {"type": "error", "status": status, "detail": detail}


def _handle_action(inbox: Inbox, data: Dict[str, Any]) -> None:
    action = data.get("action")
    if action == "select":
        inbox.select_id(str(data.get("room_id")))
    elif action == "deselect":
        inbox.deselect()
    elif action == "send":
        inbox.send(data.get("text"))
    elif action == "join":
        inbox.join(str(data.get("room_id")))
    elif action == "create":
        inbox.create_board(data.get("title"), data.get("description"))
    else:
        raise InvalidFieldError(f"Unknown action: {action}")


def _run_action(inbox: Inbox, frame: Union[str, bytes]) -> Optional[Dict[str, Any]]:
    """Decode one client frame and apply it, returning an error event on failure."""
    try:
        data = json.loads(frame)
    except ValueError:
        return _error_event(400, "Invalid JSON")
    if not isinstance(data, dict):
        return _error_event(400, "Expected a JSON object")
    try:
        _handle_action(inbox, data)
    except AidLinkError as e:
        return _error_event(e.status_code, str(e))
    except Exception:
        logger.exception("Action %r on %s failed", data.get("action"), inbox.kind.name)
        return _error_event(500, "Internal error")
    return None


def _run_logged(fn, *args):
    try:
        fn(*args)
    except Exception:
        logger.exception("Inbox update failed")


async def _receive_frame(websocket: WebSocket) -> Union[str, bytes]:
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", 1000))
    if message.get("text") is not None:
        return message["text"]
    return message.get("bytes") or b""


@app.websocket("/ws/{kind}")
async def inbox_socket(websocket: WebSocket, kind: str, token: Optional[str] = Query(default=None),
                       tz: Optional[str] = Query(default=None)):
    identity = await run_in_threadpool(auth.identity_for_token, token)
    if identity is None:
        await websocket.close(code=4001)
        return
    if kind not in messaging.ROOM_KINDS:
        await websocket.close(code=4004)
        return
    await websocket.accept()

    loop = asyncio.get_running_loop()
    events: asyncio.Queue = asyncio.Queue()
    # the Inbox and its store calls live on this one thread, off the event loop
    worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"inbox-{kind}")

    def emit(event):
        loop.call_soon_threadsafe(events.put_nowait, event)

    def dispatch(fn, *args):
        try:
            worker.submit(_run_logged, fn, *args)
        except RuntimeError:
            logger.debug("Dropped %s update for %s after close", kind, identity.email)

    inbox = Inbox(kind, identity, emit=emit, dispatch=dispatch, tz=_timezone(tz))
    tasks: List[asyncio.Task] = [asyncio.create_task(_pump(websocket, events))]
    try:
        if kind == "chats":
            await run_in_threadpool(reconcile.reconcile_owner_requests, identity)
            tasks.append(asyncio.create_task(_reconcile_periodically(identity)))
        await loop.run_in_executor(worker, inbox.open)
        while True:
            frame = await _receive_frame(websocket)
            error = await loop.run_in_executor(worker, _run_action, inbox, frame)
            if error:
                events.put_nowait(error)
    except WebSocketDisconnect:
        pass
    finally:
        await loop.run_in_executor(worker, inbox.close)
        worker.shutdown(wait=False)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


@app.get("/test")
def test_database():
    """Test endpoint to check if database is available and accessible"""
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "connection_status": "Not Connected",
        "collections": [],
    }
    if database.db is None:
        return response
    try:
        response["collections"] = database.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except AidLinkError as e:
        response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    response["database_url"] = "✅ Set" if config.DATABASE_URL else "❌ Not Set"
    response["database_name"] = "✅ Set" if config.DATABASE_NAME else "❌ Not Set"
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
