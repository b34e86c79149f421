"""Router-style registry for WebSocket message handlers."""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

Handler = Callable[..., Any]
Matcher = Callable[[Any], bool]
WebSocketHandler = Callable[[Any], bool]
LifecycleStarter = Callable[[Any], Any]


class HandlerRegistry:
    """Thread-safe registry of message handlers, custom WebSocket handlers and lifecycle hooks."""

    def __init__(self) -> None:
        self._handlers: Dict[str, Handler] = {}
        self._ws_handlers: List[Tuple[Matcher, WebSocketHandler]] = []
        self._lifecycle_starters: List[LifecycleStarter] = []
        self._lock = threading.RLock()

    def handle(self, message_type: str, handler: Optional[Handler]) -> None:
        """Register a handler for a message type; raises ValueError on bad or duplicate input."""
        if handler is None:
            raise ValueError("handler cannot be None")
        if not message_type:
            raise ValueError("message type cannot be empty")
        with self._lock:
            if message_type in self._handlers:
                raise ValueError(
                    f"handler for message type '{message_type}' already registered"
                )
            self._handlers[message_type] = handler

    def register_lifecycle(self, start: LifecycleStarter) -> None:
        """Register a function to be called when the server starts."""
        with self._lock:
            self._lifecycle_starters.append(start)

    def handle_websocket(self, matcher: Matcher, handler: WebSocketHandler) -> None:
        """Register a custom WebSocket handler chosen by a matcher."""
        with self._lock:
            self._ws_handlers.append((matcher, handler))

    def try_custom_websocket_handler(self, request: Any) -> bool:
        """Let the first matching custom handler take the request; False if none matches."""
        with self._lock:
            entries = list(self._ws_handlers)
        for matcher, handler in entries:
            if matcher(request):
                return handler(request)
        return False

    def get(self, message_type: str) -> Optional[Handler]:
        """The handler for a message type, or None."""
        with self._lock:
            return self._handlers.get(message_type)

    def has(self, message_type: str) -> bool:
        """Whether a handler exists for the message type."""
        with self._lock:
            return message_type in self._handlers

    def message_types(self) -> List[str]:
        """All registered message types."""
        with self._lock:
            return list(self._handlers)

    def start_lifecycle_handlers(self, context: Any) -> None:
        """Call every registered lifecycle function with the given context."""
        with self._lock:
            starters = list(self._lifecycle_starters)
        for starter in starters:
            starter(context)