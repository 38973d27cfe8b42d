"""
Wire formats for the persistent channels.

Framers split a byte stream into message bodies; codecs turn bodies into
`Response`/`Event` objects and build outgoing requests. Response and
event frames are told apart by their structure, never by timing.
"""

import json
import logging
import re
import uuid
from typing import Any, Optional, Union

from .types import Event, Response


logger = logging.getLogger("godot_bridge.transport")

Inbound = Union[Response, Event]

# 16MB
MAX_FRAME_SIZE = 16 * 1024 * 1024

_CONTENT_LENGTH = re.compile(rb"content-length:\s*(\d+)", re.IGNORECASE)


class FrameTooLarge(ValueError):
    """A single frame exceeded MAX_FRAME_SIZE."""


def encode_json(message: dict) -> bytes:
    """Serialize a message compactly as UTF-8 JSON."""
    return json.dumps(message, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


class NewlineFramer:
    """Newline-delimited frames (one JSON document per line)."""

    def __init__(self, max_frame_size: int = MAX_FRAME_SIZE):
        self._buffer = bytearray()
        self._max = max_frame_size

    def feed(self, data: bytes) -> list[bytes]:
        self._buffer.extend(data)
        frames = []
        while True:
            index = self._buffer.find(b"\n")
            if index == -1:
                break
            line = bytes(self._buffer[:index]).strip()
            del self._buffer[:index + 1]
            if line:
                frames.append(line)
        if len(self._buffer) > self._max:
            self._buffer.clear()
            raise FrameTooLarge(f"Unterminated frame exceeds {self._max} bytes")
        return frames

    @staticmethod
    def frame(payload: bytes) -> bytes:
        return payload + b"\n"


class ContentLengthFramer:
    """`Content-Length: N\\r\\n\\r\\n<body>` frames, as used by LSP and DAP."""

    def __init__(self, max_frame_size: int = MAX_FRAME_SIZE):
        self._buffer = bytearray()
        self._max = max_frame_size

    def feed(self, data: bytes) -> list[bytes]:
        self._buffer.extend(data)
        frames = []
        while True:
            header_end = self._buffer.find(b"\r\n\r\n")
            if header_end == -1:
                break

            header = bytes(self._buffer[:header_end])
            match = _CONTENT_LENGTH.search(header)
            if match is None:
                logger.warning(f"Dropping frame header without Content-Length: {header[:120]!r}")
                del self._buffer[:header_end + 4]
                continue

            length = int(match.group(1))
            if length > self._max:
                self._buffer.clear()
                raise FrameTooLarge(f"Frame of {length} bytes exceeds {self._max}")

            body_start = header_end + 4
            body_end = body_start + length
            if len(self._buffer) < body_end:
                break

            frames.append(bytes(self._buffer[body_start:body_end]))
            del self._buffer[:body_end]
        return frames

    @staticmethod
    def frame(payload: bytes) -> bytes:
        return b"Content-Length: %d\r\n\r\n" % len(payload) + payload


# =============================================================================
# Codecs
# =============================================================================

class RuntimeCodec:
    """
    Event/command socket protocol spoken by the engine-side addon.

    Outgoing:  {"type": "tool_invoke", "id", "tool", "args"} and {"type": "ping"}
    Incoming:  {"type": "tool_result", "id", "success", "result"?, "error"?}
               anything else with a string "type" is an event
    """

    name = "runtime"

    @staticmethod
    def framer() -> NewlineFramer:
        return NewlineFramer()

    @staticmethod
    def new_id(seq: int) -> str:
        return str(uuid.uuid4())

    @staticmethod
    def encode_request(correlation_id: Any, operation: str, params: dict) -> dict:
        return {"type": "tool_invoke", "id": correlation_id, "tool": operation, "args": params}

    @staticmethod
    def encode_notification(method: str, params: Optional[dict] = None) -> dict:
        return {"type": method, **(params or {})}

    @staticmethod
    def decode(message: dict) -> Optional[Inbound]:
        msg_type = message.get("type")
        if not isinstance(msg_type, str):
            return None

        if msg_type != "tool_result":
            return Event(name=msg_type, body=message)

        correlation_id = message.get("id")
        if not isinstance(correlation_id, str):
            return None

        success = message.get("success")
        error = message.get("error")
        if not isinstance(success, bool) or (error is not None and not isinstance(error, str)):
            return Response(correlation_id, ok=False, result=message, malformed=True,
                            error="tool_result without boolean 'success'")

        if success:
            return Response(correlation_id, ok=True, result=message.get("result"))
        return Response(correlation_id, ok=False, error=error, error_data=message.get("result"))


class LspCodec:
    """JSON-RPC 2.0 as spoken by the engine's language server."""

    name = "lsp"

    @staticmethod
    def framer() -> ContentLengthFramer:
        return ContentLengthFramer()

    @staticmethod
    def new_id(seq: int) -> int:
        return seq

    @staticmethod
    def encode_request(correlation_id: Any, operation: str, params: Any) -> dict:
        return {"jsonrpc": "2.0", "id": correlation_id, "method": operation, "params": params}

    @staticmethod
    def encode_notification(method: str, params: Any = None) -> dict:
        return {"jsonrpc": "2.0", "method": method, "params": params}

    @staticmethod
    def decode(message: dict) -> Optional[Inbound]:
        # Notifications and server->client requests both carry "method".
        if isinstance(message.get("method"), str):
            params = message.get("params")
            return Event(name=message["method"], body=params if isinstance(params, dict) else {})

        correlation_id = message.get("id")
        if correlation_id is None or ("result" not in message and "error" not in message):
            return None

        error = message.get("error")
        if error is not None:
            if not isinstance(error, dict):
                return Response(correlation_id, ok=False, result=message, malformed=True,
                                error="non-object error member")
            code = error.get("code", "unknown")
            text = error.get("message") or "Unknown LSP error"
            return Response(correlation_id, ok=False, error=f"LSP error ({code}): {text}",
                            error_data=error.get("data"))

        return Response(correlation_id, ok=True, result=message.get("result"))


class DapCodec:
    """Debug Adapter Protocol messages (request / response / event)."""

    name = "dap"

    @staticmethod
    def framer() -> ContentLengthFramer:
        return ContentLengthFramer()

    @staticmethod
    def new_id(seq: int) -> int:
        return seq

    @staticmethod
    def encode_request(correlation_id: Any, operation: str, params: Optional[dict]) -> dict:
        request = {"seq": correlation_id, "type": "request", "command": operation}
        if params is not None:
            request["arguments"] = params
        return request

    @staticmethod
    def encode_notification(method: str, params: Optional[dict] = None) -> dict:
        raise NotImplementedError("DAP has no client notifications")

    @staticmethod
    def decode(message: dict) -> Optional[Inbound]:
        msg_type = message.get("type")

        if msg_type == "event":
            body = message.get("body")
            return Event(name=str(message.get("event", "")), body=body if isinstance(body, dict) else {})

        if msg_type == "request":
            # Reverse requests (runInTerminal, ...) are surfaced, not answered.
            return Event(name=f"request:{message.get('command', '')}", body=message)

        if msg_type != "response":
            return None

        request_seq = message.get("request_seq")
        if not isinstance(request_seq, int):
            return None

        success = message.get("success")
        if not isinstance(success, bool):
            return Response(request_seq, ok=False, result=message, malformed=True,
                            error="response without boolean 'success'")

        body = message.get("body")
        if success:
            return Response(request_seq, ok=True, result=body if isinstance(body, dict) else {})

        text = message.get("message")
        if not isinstance(text, str):
            text = f"DAP request failed: {message.get('command', 'unknown command')}"
        return Response(request_seq, ok=False, error=text, error_data=body)
