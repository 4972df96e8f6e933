"""
Stream Protocol Module

Framing of run events for a remote client:
``<SCOOPSTREAM>{"type": ..., "data": ...}</SCOOPSTREAM>``.
"""

import codecs
import inspect
import json
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

import structlog
from pydantic import BaseModel, TypeAdapter, ValidationError

from ..runtime.hooks import Hook, HookName

logger = structlog.get_logger(__name__)

FRAME_OPEN = "<SCOOPSTREAM>"
FRAME_CLOSE = "</SCOOPSTREAM>"


class FrameType(str, Enum):
    """Event types carried on the wire."""

    START = "start"
    TOKEN = "token"
    STREAM = "stream"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    AUDIO = "audio"
    FINISH = "finish"
    MODEL_RESPONSE = "model_response"
    CLIENT_ACTION = "client_action"
    SELECT_AGENT = "select_agent"
    BOX_FINISH = "box_finish"


HOOK_FRAMES: Dict[HookName, FrameType] = {
    HookName.ON_START: FrameType.START,
    HookName.ON_TOKEN: FrameType.TOKEN,
    HookName.ON_STREAM: FrameType.STREAM,
    HookName.ON_AUDIO: FrameType.AUDIO,
    HookName.ON_TOOL_CALL: FrameType.TOOL_CALL,
    HookName.ON_TOOL_RESULT: FrameType.TOOL_RESULT,
    HookName.ON_CLIENT_SIDE_ACTION: FrameType.CLIENT_ACTION,
    HookName.ON_MODEL_RESPONSE: FrameType.MODEL_RESPONSE,
    HookName.ON_FINISH: FrameType.FINISH,
    HookName.ON_SELECT_AGENT: FrameType.SELECT_AGENT,
    HookName.ON_BOX_FINISH: FrameType.BOX_FINISH,
}

FRAME_HOOKS: Dict[FrameType, HookName] = {frame: hook for hook, frame in HOOK_FRAMES.items()}

_payload_adapter: TypeAdapter[Any] = TypeAdapter(Any)


class StreamFrame(BaseModel):
    """One event on the wire."""

    type: FrameType
    data: Any = None


class ProtocolError(Exception):
    """Malformed stream frame."""
    pass


def encode_frame(frame_type: Union[FrameType, str], data: Any = None) -> str:
    """Serialize an event as a framed string."""
    payload = {
        "type": FrameType(frame_type).value,
        "data": _payload_adapter.dump_python(data, mode="json"),
    }
    body = json.dumps(payload, separators=(",", ":"))
    # Tag characters inside the body must not close or open a frame
    body = body.replace("<", "\\u003c").replace(">", "\\u003e")
    return f"{FRAME_OPEN}{body}{FRAME_CLOSE}"


def decode_frame(text: str) -> StreamFrame:
    """
    Parse one framed string.

    Raises:
        ProtocolError: If the frame is not tagged or its body is invalid
    """
    text = text.strip()
    if not (text.startswith(FRAME_OPEN) and text.endswith(FRAME_CLOSE)):
        raise ProtocolError("Stream frame is missing its tags")
    return _decode_body(text[len(FRAME_OPEN) : -len(FRAME_CLOSE)])


def _decode_body(body: str) -> StreamFrame:
    try:
        return StreamFrame.model_validate(json.loads(body))
    except (json.JSONDecodeError, ValidationError) as e:
        raise ProtocolError(f"Invalid stream frame: {e}") from e


def _partial_open_suffix(text: str) -> int:
    """Length of the longest suffix of ``text`` that starts an open tag."""
    for size in range(min(len(text), len(FRAME_OPEN) - 1), 0, -1):
        if FRAME_OPEN.startswith(text[-size:]):
            return size
    return 0


class StreamFrameReader:
    """
    Incremental frame reader.

    Chunks may split a frame anywhere, including inside a tag or a
    multi-byte character; incomplete frames are buffered until closed.
    """

    def __init__(self):
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self.lost = 0

    @property
    def pending(self) -> bool:
        return bool(self._buffer)

    def feed(self, chunk: Union[str, bytes]) -> List[StreamFrame]:
        """Add a chunk and return every frame it completes."""
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk

        frames: List[StreamFrame] = []
        while True:
            start = self._buffer.find(FRAME_OPEN)
            if start < 0:
                keep = _partial_open_suffix(self._buffer)
                self._buffer = self._buffer[len(self._buffer) - keep :] if keep else ""
                break

            body_start = start + len(FRAME_OPEN)
            end = self._buffer.find(FRAME_CLOSE, body_start)
            reopen = self._buffer.find(FRAME_OPEN, body_start)

            if reopen >= 0 and (end < 0 or reopen < end):
                self.lost += 1
                logger.warning("stream_frame_lost", dropped=self._buffer[start:reopen][:200])
                self._buffer = self._buffer[reopen:]
                continue

            if end < 0:
                self._buffer = self._buffer[start:]
                break

            body = self._buffer[body_start:end]
            self._buffer = self._buffer[end + len(FRAME_CLOSE) :]
            try:
                frames.append(_decode_body(body))
            except ProtocolError as e:
                self.lost += 1
                logger.warning("stream_frame_invalid", error=str(e))

        return frames

    def close(self) -> List[StreamFrame]:
        """End of stream; warns about an unterminated frame."""
        frames = self.feed(self._decoder.decode(b"", final=True))
        if FRAME_OPEN in self._buffer:
            self.lost += 1
            logger.warning("stream_frame_unterminated", dropped=self._buffer[:200])
        self._buffer = ""
        return frames


def server_hooks(
    send: Callable[[str], Any],
    names: Optional[Iterable[Union[HookName, str]]] = None,
) -> Dict[HookName, Hook]:
    """
    Hooks that forward run events as frames through ``send``.

    Args:
        send: Sync or async callable receiving each framed string
        names: Hooks to bridge, all when ``None``
    """
    selected = [HookName(name) for name in names] if names is not None else list(HookName)

    def bridge(frame_type: FrameType) -> Hook:
        async def forward(payload: Any) -> None:
            result = send(encode_frame(frame_type, payload))
            if inspect.isawaitable(result):
                await result

        return forward

    return {name: bridge(HOOK_FRAMES[name]) for name in selected}


async def dispatch_frame(frame: StreamFrame, hooks: Mapping[Union[HookName, str], Hook]) -> None:
    """Invoke the client hook matching a received frame."""
    handler = None
    hook_name = FRAME_HOOKS[frame.type]
    for name, func in hooks.items():
        if HookName(name) == hook_name:
            handler = func
            break
    if handler is None:
        return

    result = handler(frame.data)
    if inspect.isawaitable(result):
        await result


__all__ = [
    "FRAME_OPEN",
    "FRAME_CLOSE",
    "FrameType",
    "HOOK_FRAMES",
    "StreamFrame",
    "ProtocolError",
    "encode_frame",
    "decode_frame",
    "StreamFrameReader",
    "server_hooks",
    "dispatch_frame",
]
