#!/usr/bin/env python3
"""
Data models for routing and streaming.

Request shapes are parsed once from the caller's loosely-typed mapping so
the router works over typed fields instead of raw key lookups. Unknown
keys are kept on the generic part and never inspected by routing.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Union


TERMINAL_EVENT_TYPES = frozenset({
    "response.completed",
    "response.failed",
    "response.canceled",
})


def _section(value: Any) -> Optional[Mapping]:
    # Non-mapping sub-structures ("audio": "x") count as absent
    return value if isinstance(value, Mapping) else None


@dataclass(frozen=True)
class AudioRequest:
    file: Any = None
    action: Optional[str] = None
    text: Optional[str] = None

    @classmethod
    def from_value(cls, value: Any) -> Optional["AudioRequest"]:
        section = _section(value)
        if section is None:
            return None
        return cls(
            file=section.get('file'),
            action=section.get('action'),
            text=section.get('text'),
        )


@dataclass(frozen=True)
class ImageRequest:
    image: Any = None
    prompt: Optional[str] = None
    mask: Any = None
    size: Optional[str] = None

    @classmethod
    def from_value(cls, value: Any) -> Optional["ImageRequest"]:
        section = _section(value)
        if section is None:
            return None
        return cls(
            image=section.get('image'),
            prompt=section.get('prompt'),
            mask=section.get('mask'),
            size=section.get('size'),
        )


@dataclass(frozen=True)
class AudioInputRequest:
    file: Any = None

    @classmethod
    def from_value(cls, value: Any) -> Optional["AudioInputRequest"]:
        section = _section(value)
        if section is None:
            return None
        return cls(file=section.get('file'))


@dataclass(frozen=True)
class RequestDescription:
    """
    Typed view over a caller-supplied request mapping.

    Attributes:
        audio: `audio {file, action, text}` sub-shape (None when absent/not a mapping)
        image: `image {image, prompt, mask, size}` sub-shape
        audio_input: `audio_input {file}` sub-shape
        message: Generic message field (not used for routing)
        model: Generic model field (not used for routing)
        extra: Every other top-level key, untouched
    """
    audio: Optional[AudioRequest] = None
    image: Optional[ImageRequest] = None
    audio_input: Optional[AudioInputRequest] = None
    message: Any = None
    model: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "RequestDescription":
        data = data or {}
        known = {'audio', 'image', 'audio_input', 'message', 'model'}
        return cls(
            audio=AudioRequest.from_value(data.get('audio')),
            image=ImageRequest.from_value(data.get('image')),
            audio_input=AudioInputRequest.from_value(data.get('audio_input')),
            message=data.get('message'),
            model=data.get('model'),
            extra={k: v for k, v in data.items() if k not in known},
        )

    @classmethod
    def coerce(cls, request: Union["RequestDescription", Mapping[str, Any], None]) -> "RequestDescription":
        if isinstance(request, RequestDescription):
            return request
        return cls.from_dict(request)

    def get_field(self, path: str) -> Any:
        """Resolve a dotted path like "audio.file"; missing parts resolve to None."""
        section_name, _, attr = path.partition('.')
        section = getattr(self, section_name, None)
        if not attr:
            return section
        if section is None:
            return None
        return getattr(section, attr, None)

    def has(self, path: str) -> bool:
        return self.get_field(path) is not None


@dataclass
class SseEvent:
    """
    One decoded Server-Sent Event.

    `data` is the decoded JSON object, or {"data": <raw payload>} when the
    payload did not decode to an object.
    """
    type: str
    data: Dict[str, Any] = field(default_factory=dict)
    is_final: bool = False

    @classmethod
    def create(cls, event_type: str, data: Dict[str, Any]) -> "SseEvent":
        return cls(type=event_type, data=data, is_final=event_type in TERMINAL_EVENT_TYPES)

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.type, 'data': self.data, 'isFinal': self.is_final}
