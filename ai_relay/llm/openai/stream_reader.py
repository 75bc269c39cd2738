#!/usr/bin/env python3
from typing import Any, Callable, Dict, Iterable, Iterator, Mapping, Optional, Union

from ..models import SseEvent
from .sse_parser import DELTA_EVENT, TEXT_COMPLETED_EVENT, extract_completed_text, extract_delta_text

EventLike = Union[SseEvent, Mapping[str, Any]]

_TERMINAL_NAMES = {
    "response.completed": "completed",
    "response.failed": "failed",
    "response.canceled": "canceled",
}


def _unpack(event: EventLike):
    if isinstance(event, SseEvent):
        return event.type, dict(event.data or {}), event.is_final
    data = event.get('data')
    return (
        str(event.get('type') or ''),
        dict(data) if isinstance(data, Mapping) else {},
        bool(event.get('isFinal', False)),
    )


class StreamReader:
    """Turns parsed Responses events into simpler consumer-facing events or plain text."""

    def normalize(self, events: Iterable[EventLike]) -> Iterator[SseEvent]:
        """
        Map Responses event names onto a smaller vocabulary:

            response.output_text.delta      -> message.delta {text, typing=True}
            response.output_text.completed  -> message.completed {text, typing=False}
            *tool_call.created              -> tool_call.started
            *tool_call.delta                -> tool_call.args.delta {delta, ...}
            response.completed/failed/canceled -> completed/failed/canceled (final)

        Anything else passes through with its original type.
        """
        for event in events:
            event_type, data, is_final = _unpack(event)

            if event_type == DELTA_EVENT:
                yield SseEvent(type='message.delta', data={'text': extract_delta_text(data), 'typing': True})
            elif event_type == TEXT_COMPLETED_EVENT:
                yield SseEvent(type='message.completed', data={'text': extract_completed_text(data), 'typing': False})
            elif 'tool_call.created' in event_type:
                yield SseEvent(type='tool_call.started', data=data)
            elif 'tool_call.delta' in event_type:
                yield SseEvent(type='tool_call.args.delta', data={**data, 'delta': _extract_args_delta(data)})
            elif event_type in _TERMINAL_NAMES:
                yield SseEvent(type=_TERMINAL_NAMES[event_type], data=data, is_final=True)
            else:
                yield SseEvent(type=event_type, data=data, is_final=is_final)

    def text_chunks(
        self,
        events: Iterable[EventLike],
        on_text_chunk: Optional[Callable[[str], None]] = None,
    ) -> Iterator[str]:
        """Yield only non-empty text pieces (deltas and completed text), calling `on_text_chunk` for each."""
        for event in events:
            event_type, data, _ = _unpack(event)

            if event_type == DELTA_EVENT:
                text = extract_delta_text(data)
            elif event_type == TEXT_COMPLETED_EVENT:
                text = extract_completed_text(data)
            else:
                continue

            if text == '':
                continue
            if on_text_chunk is not None:
                on_text_chunk(text)
            yield text


def _extract_args_delta(data: Dict[str, Any]) -> str:
    delta = data.get('delta')
    if isinstance(delta, str):
        return delta
    arguments = data.get('arguments')
    if isinstance(arguments, dict) and isinstance(arguments.get('delta'), str):
        return arguments['delta']
    return ''
