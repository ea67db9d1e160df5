"""
WebSocket stream of committed CRM client changes.
"""
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket
from fastapi.encoders import jsonable_encoder

from ..services.crm_repository import CLIENTS_TABLE
from ..services.realtime_service import get_change_feed, INSERT, UPDATE, DELETE

logger = logging.getLogger(__name__)
router = APIRouter(tags=["crm-realtime"])

SUBSCRIBED = "SUBSCRIBED"


@router.websocket("/api/crm/realtime")
async def client_changes(websocket: WebSocket, sheet_id: Optional[str] = None):
    """
    Push {"event": INSERT|UPDATE|DELETE, "record": {...}} messages for client
    changes, limited to one sheet when sheet_id is given. A client moved out
    of the sheet arrives as a DELETE. The first message, {"event": "SUBSCRIBED"},
    confirms the session is listening.
    """
    await websocket.accept()
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def forward(event_type: str):
        def callback(row):
            message = {"event": event_type, "record": jsonable_encoder(row)}
            loop.call_soon_threadsafe(queue.put_nowait, message)
        return callback

    subscription = get_change_feed().subscribe(
        CLIENTS_TABLE,
        on_insert=forward(INSERT),
        on_update=forward(UPDATE),
        on_delete=forward(DELETE),
        scope={"sheet_id": sheet_id} if sheet_id else None,
    )

    async def pump():
        while True:
            await websocket.send_json(await queue.get())

    queue.put_nowait({"event": SUBSCRIBED, "sheet_id": sheet_id})
    sender = asyncio.create_task(pump())
    logger.info(f"Realtime session opened (sheet_id={sheet_id})")
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    finally:
        subscription.unsubscribe()
        sender.cancel()
        await asyncio.wait([sender])
        if not sender.cancelled() and sender.exception() is not None:
            logger.error(f"Realtime sender failed (sheet_id={sheet_id})", exc_info=sender.exception())
        logger.info(f"Realtime session closed (sheet_id={sheet_id})")
