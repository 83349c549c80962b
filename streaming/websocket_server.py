"""
WebSocket handler for /ws/session.

- Pushes controller events (state, transcript, error) to the page as JSON.
- Accepts page commands: {"action": "start", "language": ...}, {"action": "stop"},
  {"action": "snapshot"}, {"action": "theme", "theme": ...}.
- When the last page disconnects the session is stopped, the same as the page
  being torn down in a browser.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect

from core.languages import UnknownLanguageError, find_language
from streaming.session_controller import SessionActiveError

logger = logging.getLogger(__name__)


def build_ws_session_handler(
    get_controller: Callable[[], Any],
    get_presentation: Optional[Callable[[], Any]] = None,
    stop_on_last_disconnect: bool = True,
) -> Callable:
    """
    Build the async WebSocket handler for /ws/session.

    Args:
        get_controller: Callable returning the SessionController.
        get_presentation: Optional callable returning the PresentationState.
        stop_on_last_disconnect: Stop the session when no page is connected anymore.

    Returns:
        Async function (websocket: WebSocket) -> None for use with FastAPI.
    """
    connections = {"count": 0}

    def _snapshot() -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": "snapshot", "session": get_controller().snapshot()}
        if get_presentation:
            payload["ui"] = get_presentation().to_dict()
        return payload

    async def _handle_command(websocket: WebSocket, message: Dict[str, Any]) -> None:
        controller = get_controller()
        action = message.get("action")
        if not isinstance(action, str):
            await websocket.send_json({"type": "command_error", "message": "Expected a string action"})
            return
        action = action.lower()
        if action == "start":
            try:
                language = find_language(message.get("language"))
                await controller.start(language.name)
            except (UnknownLanguageError, SessionActiveError) as e:
                await websocket.send_json({"type": "command_error", "action": action, "message": str(e)})
        elif action == "stop":
            controller.stop()
        elif action == "snapshot":
            await websocket.send_json(_snapshot())
        elif action == "theme" and get_presentation:
            try:
                get_presentation().set_theme(message.get("theme"))
            except ValueError as e:
                await websocket.send_json({"type": "command_error", "action": action, "message": str(e)})
                return
            await websocket.send_json({"type": "ui", "ui": get_presentation().to_dict()})
        else:
            await websocket.send_json({"type": "command_error", "action": action, "message": "Unknown action"})

    async def handle_ws_session(websocket: WebSocket) -> None:
        await websocket.accept()
        controller = get_controller()
        events: asyncio.Queue = asyncio.Queue()
        listener = events.put_nowait
        controller.subscribe(listener)
        connections["count"] += 1

        async def forward_events() -> None:
            while True:
                event = await events.get()
                try:
                    await websocket.send_json(event)
                except (WebSocketDisconnect, RuntimeError):
                    return

        forward_task = asyncio.create_task(forward_events())
        try:
            await websocket.send_json(_snapshot())
            while True:
                text = await websocket.receive_text()
                try:
                    message = json.loads(text)
                except json.JSONDecodeError:
                    await websocket.send_json({"type": "command_error", "message": "Invalid JSON"})
                    continue
                if not isinstance(message, dict):
                    await websocket.send_json({"type": "command_error", "message": "Expected a JSON object"})
                    continue
                await _handle_command(websocket, message)
        except WebSocketDisconnect:
            pass
        finally:
            controller.unsubscribe(listener)
            forward_task.cancel()
            connections["count"] = max(0, connections["count"] - 1)
            if stop_on_last_disconnect and connections["count"] == 0 and controller.state.value != "idle":
                logger.info("Last page disconnected; stopping session")
                controller.stop()

    return handle_ws_session
