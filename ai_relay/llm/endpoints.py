#!/usr/bin/env python3
"""
Endpoint catalog for the generative-AI API.

Closed set of capability endpoints plus the audio/image action enums that
select between them. No behavior beyond identity, API path and validity.
"""

from enum import Enum
from typing import Iterable, List


class Endpoint(str, Enum):
    """Capability endpoints the router can select."""
    RESPONSE_API = "response_api"
    CHAT_COMPLETION = "chat_completion"
    AUDIO_TRANSCRIPTION = "audio_transcription"
    AUDIO_TRANSLATION = "audio_translation"
    AUDIO_SPEECH = "audio_speech"
    IMAGE_GENERATION = "image_generation"
    IMAGE_EDIT = "image_edit"
    IMAGE_VARIATION = "image_variation"

    @property
    def url(self) -> str:
        return _ENDPOINT_PATHS[self]

    @property
    def is_audio(self) -> bool:
        return self in (
            Endpoint.AUDIO_TRANSCRIPTION,
            Endpoint.AUDIO_TRANSLATION,
            Endpoint.AUDIO_SPEECH,
        )

    @property
    def is_image(self) -> bool:
        return self in (
            Endpoint.IMAGE_GENERATION,
            Endpoint.IMAGE_EDIT,
            Endpoint.IMAGE_VARIATION,
        )

    @property
    def requires_multipart(self) -> bool:
        return self in (
            Endpoint.AUDIO_TRANSCRIPTION,
            Endpoint.AUDIO_TRANSLATION,
            Endpoint.IMAGE_EDIT,
            Endpoint.IMAGE_VARIATION,
        )

    @classmethod
    def is_valid(cls, name: str) -> bool:
        return name in cls._value2member_map_

    @classmethod
    def names(cls) -> List[str]:
        return [endpoint.value for endpoint in cls]


_ENDPOINT_PATHS = {
    Endpoint.RESPONSE_API: "/v1/responses",
    Endpoint.CHAT_COMPLETION: "/v1/chat/completions",
    Endpoint.AUDIO_TRANSCRIPTION: "/v1/audio/transcriptions",
    Endpoint.AUDIO_TRANSLATION: "/v1/audio/translations",
    Endpoint.AUDIO_SPEECH: "/v1/audio/speech",
    Endpoint.IMAGE_GENERATION: "/v1/images/generations",
    Endpoint.IMAGE_EDIT: "/v1/images/edits",
    Endpoint.IMAGE_VARIATION: "/v1/images/variations",
}


# Default routing order: most specific first, catch-all last
DEFAULT_ENDPOINT_PRIORITY = [
    Endpoint.AUDIO_TRANSCRIPTION.value,
    Endpoint.AUDIO_TRANSLATION.value,
    Endpoint.AUDIO_SPEECH.value,
    Endpoint.IMAGE_GENERATION.value,
    Endpoint.IMAGE_EDIT.value,
    Endpoint.IMAGE_VARIATION.value,
    Endpoint.CHAT_COMPLETION.value,
    Endpoint.RESPONSE_API.value,
]


class AudioAction(str, Enum):
    TRANSCRIBE = "transcribe"
    TRANSLATE = "translate"
    SPEECH = "speech"

    @property
    def requires_audio_file(self) -> bool:
        return self in (AudioAction.TRANSCRIBE, AudioAction.TRANSLATE)

    @property
    def requires_text_input(self) -> bool:
        return self is AudioAction.SPEECH

    def to_endpoint(self) -> Endpoint:
        return {
            AudioAction.TRANSCRIBE: Endpoint.AUDIO_TRANSCRIPTION,
            AudioAction.TRANSLATE: Endpoint.AUDIO_TRANSLATION,
            AudioAction.SPEECH: Endpoint.AUDIO_SPEECH,
        }[self]


class ImageAction(str, Enum):
    GENERATE = "generate"
    EDIT = "edit"
    VARIATION = "variation"

    @property
    def requires_prompt(self) -> bool:
        return self in (ImageAction.GENERATE, ImageAction.EDIT)

    @property
    def requires_source_image(self) -> bool:
        return self in (ImageAction.EDIT, ImageAction.VARIATION)

    @property
    def requires_mask(self) -> bool:
        return self is ImageAction.EDIT

    def to_endpoint(self) -> Endpoint:
        return {
            ImageAction.GENERATE: Endpoint.IMAGE_GENERATION,
            ImageAction.EDIT: Endpoint.IMAGE_EDIT,
            ImageAction.VARIATION: Endpoint.IMAGE_VARIATION,
        }[self]


def unknown_endpoint_names(names: Iterable[str]) -> List[str]:
    return [name for name in names if not Endpoint.is_valid(name)]
