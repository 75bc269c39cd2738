#!/usr/bin/env python3
"""
Server-Sent Events parsing for the Responses API stream.

Two layers:
- parse(): event/data framing and JSON decoding, one SseEvent per event
- parse_with_accumulation(): parse() plus running output-text accumulation

Both are generators that pull one line at a time from the source, so at
most one event is ever buffered.
"""

import json
from typing import Any, Dict, Iterable, Iterator, Optional, Union

from ..cancellation import CancellationToken, check_canceled
from ..models import TERMINAL_EVENT_TYPES, SseEvent


DELTA_EVENT = "response.output_text.delta"
TEXT_COMPLETED_EVENT = "response.output_text.completed"
TOOL_CALL_PREFIX = "response.tool_call."

DONE_SENTINEL = "[DONE]"


def extract_delta_text(data: Dict[str, Any]) -> str:
    """Delta text from {"delta"}, {"text"}, {"item": {"delta"}} or {"output_text": {"delta"}}."""
    for value in (
        data.get('delta'),
        data.get('text'),
        _nested(data, 'item', 'delta'),
        _nested(data, 'output_text', 'delta'),
    ):
        if isinstance(value, str):
            return value
    return ''


def extract_completed_text(data: Dict[str, Any]) -> str:
    for value in (
        data.get('text'),
        data.get('output_text'),
        _nested(data, 'item', 'text'),
    ):
        if isinstance(value, str):
            return value
    return ''


def _nested(data: Dict[str, Any], outer: str, inner: str) -> Any:
    section = data.get(outer)
    return section.get(inner) if isinstance(section, dict) else None


class ResponsesSseParser:
    """
    Decodes `event:` / `data:` line streams into SseEvents.

    Tolerates bytes lines, `:` comment lines, payloads split over several
    `data:` lines (joined with newlines before decoding), a `data: [DONE]`
    sentinel, and a missing trailing blank line (the last event is flushed
    at end of input). A payload that does not decode to a JSON object is
    surfaced as {"data": <raw payload>} rather than dropped.

    Example:
        >>> parser = ResponsesSseParser()
        >>> lines = ['event: response.output_text.delta', 'data: {"delta": "Hel"}', '',
        ...          'event: response.output_text.delta', 'data: {"delta": "lo"}', '']
        >>> [e.data['accumulated'] for e in parser.parse_with_accumulation(lines)]
        ['Hel', 'Hello']
    """

    def parse(
        self,
        lines: Iterable[Union[str, bytes]],
        cancel_token: Optional[CancellationToken] = None,
    ) -> Iterator[SseEvent]:
        event_name: Optional[str] = None
        data_parts = []

        for raw_line in lines:
            check_canceled(cancel_token)

            if isinstance(raw_line, bytes):
                raw_line = raw_line.decode('utf-8', errors='replace')
            line = raw_line.strip()

            if line == '':
                event = self._build_event(event_name, data_parts)
                if event is not None:
                    yield event
                event_name = None
                data_parts = []
                continue

            if line.startswith(':'):
                continue

            if line.startswith('event:'):
                event_name = line[len('event:'):].strip()
            elif line.startswith('data:'):
                payload = line[len('data:'):].strip()
                if payload == DONE_SENTINEL:
                    break
                data_parts.append(payload)

        event = self._build_event(event_name, data_parts)
        if event is not None:
            yield event

    def parse_with_accumulation(
        self,
        lines: Iterable[Union[str, bytes]],
        cancel_token: Optional[CancellationToken] = None,
    ) -> Iterator[SseEvent]:
        """
        parse() plus running text accumulation.

        - output_text.delta: data gains `delta`, `accumulated` and `typing=True`
        - output_text.completed: data gains `text` (the event's own text when
          present, else the buffer) and `typing=False`
        - tool_call.* and everything else: passed through untouched
        - completed/failed/canceled: isFinal, and the buffer resets to empty
        """
        accumulated = ''

        for event in self.parse(lines, cancel_token):
            if event.type == DELTA_EVENT:
                delta = extract_delta_text(event.data)
                accumulated += delta
                event.data = {**event.data, 'delta': delta, 'accumulated': accumulated, 'typing': True}
                event.is_final = False
                yield event
                continue

            if event.type == TEXT_COMPLETED_EVENT:
                text = extract_completed_text(event.data)
                if text == '':
                    text = accumulated
                else:
                    accumulated = text
                event.data = {**event.data, 'text': text, 'typing': False}
                event.is_final = False
                yield event
                continue

            yield event

            if event.type in TERMINAL_EVENT_TYPES:
                accumulated = ''

    def _build_event(self, event_name: Optional[str], data_parts) -> Optional[SseEvent]:
        if not data_parts:
            return None

        raw = "\n".join(data_parts)
        if raw == '':
            return None

        try:
            decoded = json.loads(raw)
        except ValueError:
            decoded = None

        if not event_name and isinstance(decoded, dict) and isinstance(decoded.get('type'), str):
            event_name = decoded['type']

        if not event_name:
            return None

        if not isinstance(decoded, dict):
            decoded = {'data': raw}

        return SseEvent.create(event_name, decoded)
