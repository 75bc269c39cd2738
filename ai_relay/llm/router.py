#!/usr/bin/env python3
"""
Endpoint routing for unified requests.

Provides EndpointRouter, which picks the capability endpoint for a request
by walking a configured priority list and returning the first endpoint whose
rule matches (first match wins). Rules are plain data, so the same table
drives per-request matching and the startup conflict scan.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence, Union

from ai_relay.logger import RelayLogger, as_relay_logger
from .endpoints import DEFAULT_ENDPOINT_PRIORITY, AudioAction, Endpoint, unknown_endpoint_names
from .errors import InvalidConfiguration, RoutingConflict
from .models import RequestDescription


CONFLICT_BEHAVIORS = ("error", "warn", "silent")


@dataclass(frozen=True)
class EndpointRule:
    """
    Trigger condition for one endpoint.

    A request matches when every `required` field is present, every
    `forbidden` field is absent, and every discriminator field equals its
    value exactly (case-sensitive). A rule with no conditions is a catch-all.
    """
    required: FrozenSet[str] = frozenset()
    forbidden: FrozenSet[str] = frozenset()
    discriminators: Mapping[str, str] = field(default_factory=dict)

    @property
    def is_catch_all(self) -> bool:
        return not (self.required or self.forbidden or self.discriminators)

    @property
    def trigger_fields(self) -> FrozenSet[str]:
        return self.required | frozenset(self.discriminators)

    def matches(self, request: RequestDescription) -> bool:
        if any(not request.has(path) for path in self.required):
            return False
        if any(request.has(path) for path in self.forbidden):
            return False
        return all(request.get_field(path) == value for path, value in self.discriminators.items())

    def can_overlap(self, other: "EndpointRule") -> bool:
        """True when some request could satisfy both rules at once."""
        if self.trigger_fields & other.forbidden or other.trigger_fields & self.forbidden:
            return False
        for path, value in self.discriminators.items():
            if path in other.discriminators and other.discriminators[path] != value:
                return False
        return True

    def subsumes(self, other: "EndpointRule") -> bool:
        """True when every request matching `other` also matches this rule."""
        if not self.required <= other.trigger_fields:
            return False
        if not self.forbidden <= other.forbidden:
            return False
        return all(other.discriminators.get(path) == value for path, value in self.discriminators.items())


DEFAULT_RULES: Dict[Endpoint, EndpointRule] = {
    Endpoint.AUDIO_TRANSCRIPTION: EndpointRule(
        required=frozenset({"audio.file"}),
        discriminators={"audio.action": AudioAction.TRANSCRIBE.value},
    ),
    Endpoint.AUDIO_TRANSLATION: EndpointRule(
        required=frozenset({"audio.file"}),
        discriminators={"audio.action": AudioAction.TRANSLATE.value},
    ),
    Endpoint.AUDIO_SPEECH: EndpointRule(
        required=frozenset({"audio.text"}),
        discriminators={"audio.action": AudioAction.SPEECH.value},
    ),
    Endpoint.IMAGE_GENERATION: EndpointRule(
        required=frozenset({"image.prompt"}),
        forbidden=frozenset({"image.image"}),
    ),
    Endpoint.IMAGE_EDIT: EndpointRule(
        required=frozenset({"image.image", "image.prompt"}),
    ),
    Endpoint.IMAGE_VARIATION: EndpointRule(
        required=frozenset({"image.image"}),
        forbidden=frozenset({"image.prompt"}),
    ),
    # Audio inside a chat turn; chat completions accept audio input, responses don't
    Endpoint.CHAT_COMPLETION: EndpointRule(
        required=frozenset({"audio_input.file"}),
    ),
    Endpoint.RESPONSE_API: EndpointRule(),
}


@dataclass(frozen=True)
class ConflictReport:
    endpoints: List[str]
    reasoning: str


class EndpointRouter:
    """
    Deterministic first-match-wins endpoint selection.

    Configuration is validated once at construction:
    - unknown endpoint names raise InvalidConfiguration (when name validation is on)
    - duplicate entries always raise InvalidConfiguration
    - ambiguous or shadowed endpoints are reported per `conflict_behavior`
      (error raises RoutingConflict, warn logs, silent ignores)

    Routing itself never raises and never retries. Requests that match no
    configured rule fall back to the Responses API.

    Thread Safety:
        Routers hold no per-request state and can be shared across threads.

    Example:
        >>> router = EndpointRouter()
        >>> router.determine_endpoint({"audio": {"file": "a.mp3", "action": "transcribe"}})
        <Endpoint.AUDIO_TRANSCRIPTION: 'audio_transcription'>
        >>> router.determine_endpoint({"image": {"image": "p.png"}})
        <Endpoint.IMAGE_VARIATION: 'image_variation'>
        >>> router.determine_endpoint({})
        <Endpoint.RESPONSE_API: 'response_api'>
    """

    def __init__(
        self,
        endpoint_priority: Optional[Sequence[str]] = None,
        validate_conflicts: bool = True,
        conflict_behavior: str = "error",
        validate_endpoint_names: bool = True,
        rules: Optional[Mapping[Union[Endpoint, str], EndpointRule]] = None,
        logger: Union[RelayLogger, logging.Logger, None] = None,
    ):
        """
        Initialize router and validate its configuration.

        Args:
            endpoint_priority: Endpoint names in match order (default: catalog order,
                               most specific first, response_api last)
            validate_conflicts: Scan for ambiguous/shadowed endpoints at startup
            conflict_behavior: "error", "warn" or "silent"
            validate_endpoint_names: Reject names missing from the catalog
            rules: Per-endpoint rule overrides merged over DEFAULT_RULES
            logger: Logger for conflict warnings and routing decisions

        Raises:
            InvalidConfiguration: Unknown names, duplicates, or bad conflict_behavior
            RoutingConflict: Conflict found and conflict_behavior is "error"
        """
        self.logger = as_relay_logger(logger, __name__)

        if conflict_behavior not in CONFLICT_BEHAVIORS:
            raise InvalidConfiguration(
                f"conflict_behavior must be one of {', '.join(CONFLICT_BEHAVIORS)}, "
                f"got {conflict_behavior!r}",
                subject="routing configuration",
            )

        self.validate_conflicts = validate_conflicts
        self.conflict_behavior = conflict_behavior
        self.validate_endpoint_names = validate_endpoint_names

        self.rules: Dict[Endpoint, EndpointRule] = dict(DEFAULT_RULES)
        for name, rule in (rules or {}).items():
            try:
                endpoint = Endpoint(name)
            except ValueError as e:
                raise InvalidConfiguration(
                    f"Rule override for unknown endpoint {name!r}. "
                    f"Known endpoints: {', '.join(known.value for known in Endpoint)}",
                    subject="routing configuration",
                ) from e
            self.rules[endpoint] = rule

        names = list(endpoint_priority) if endpoint_priority else list(DEFAULT_ENDPOINT_PRIORITY)
        self.endpoint_priority = self._validate_priority(names)
        self.conflicts: List[ConflictReport] = []

        if self.validate_conflicts:
            self.conflicts = self.find_conflicts()
            self._handle_conflicts(self.conflicts)

    @classmethod
    def from_config(cls, routing_config: Any, logger=None, rules=None) -> "EndpointRouter":
        """Build a router from a RoutingConfig (or anything with the same attributes)."""
        return cls(
            endpoint_priority=routing_config.endpoint_priority,
            validate_conflicts=routing_config.validate_conflicts,
            conflict_behavior=routing_config.conflict_behavior,
            validate_endpoint_names=routing_config.validate_endpoint_names,
            rules=rules,
            logger=logger,
        )

    def determine_endpoint(self, request: Union[RequestDescription, Mapping[str, Any], None]) -> Endpoint:
        """
        Pick the endpoint for a request.

        Args:
            request: Raw request mapping or an already-parsed RequestDescription

        Returns:
            First endpoint in priority order whose rule matches, else RESPONSE_API
        """
        description = RequestDescription.coerce(request)

        for endpoint in self.endpoint_priority:
            if self.rules[endpoint].matches(description):
                self.logger.debug(f"Routed request to {endpoint.value}", endpoint=endpoint.value)
                return endpoint

        self.logger.debug(
            "No routing rule matched, using default endpoint",
            endpoint=Endpoint.RESPONSE_API.value
        )
        return Endpoint.RESPONSE_API

    def matching_endpoints(self, request: Union[RequestDescription, Mapping[str, Any], None]) -> List[Endpoint]:
        """All configured endpoints whose rule matches, in priority order."""
        description = RequestDescription.coerce(request)
        return [e for e in self.endpoint_priority if self.rules[e].matches(description)]

    def find_conflicts(self) -> List[ConflictReport]:
        """
        Static scan of the configured priority list (no request involved).

        Reports, for each ordered pair (earlier, later):
        - shadowing: the earlier rule matches everything the later one does,
          so the later endpoint is unreachable
        - ambiguity: both rules share a trigger field and nothing (a forbidden
          field or a differing discriminator) keeps them apart
        """
        reports: List[ConflictReport] = []
        priority = self.endpoint_priority

        for i, earlier in enumerate(priority):
            earlier_rule = self.rules[earlier]
            for later in priority[i + 1:]:
                later_rule = self.rules[later]

                if earlier_rule.subsumes(later_rule):
                    reports.append(ConflictReport(
                        endpoints=[earlier.value, later.value],
                        reasoning=(
                            f"'{earlier.value}' is listed before '{later.value}' and matches every "
                            f"request '{later.value}' would match, so '{later.value}' can never be selected."
                        ),
                    ))
                    continue

                shared = earlier_rule.trigger_fields & later_rule.trigger_fields
                if shared and earlier_rule.can_overlap(later_rule):
                    reports.append(ConflictReport(
                        endpoints=[earlier.value, later.value],
                        reasoning=(
                            f"'{earlier.value}' and '{later.value}' both trigger on "
                            f"{', '.join(sorted(shared))} with no disambiguating field; "
                            f"requests carrying both sets of fields are decided by list order alone."
                        ),
                    ))

        return reports

    def _validate_priority(self, names: List[str]) -> List[Endpoint]:
        seen = set()
        duplicates = []
        for name in names:
            if name in seen and name not in duplicates:
                duplicates.append(name)
            seen.add(name)
        if duplicates:
            raise InvalidConfiguration(
                f"Duplicate endpoints in priority list: {', '.join(duplicates)}",
                subject="routing.endpoint_priority configuration",
            )

        unknown = unknown_endpoint_names(names)
        if unknown and self.validate_endpoint_names:
            raise InvalidConfiguration(
                f"Invalid endpoints: {', '.join(unknown)}\n"
                f"Valid endpoints: {', '.join(Endpoint.names())}",
                subject="routing.endpoint_priority configuration",
            )

        if unknown:
            self.logger.debug(
                f"Ignoring unknown endpoints in priority list: {', '.join(unknown)}",
                endpoints=unknown
            )

        return [Endpoint(name) for name in names if Endpoint.is_valid(name)]

    def _handle_conflicts(self, conflicts: List[ConflictReport]):
        if not conflicts or self.conflict_behavior == "silent":
            return

        if self.conflict_behavior == "error":
            endpoints: List[str] = []
            for report in conflicts:
                endpoints.extend(e for e in report.endpoints if e not in endpoints)
            raise RoutingConflict(endpoints, "\n".join(r.reasoning for r in conflicts))

        for report in conflicts:
            self.logger.warning(
                f"Endpoint routing conflict: {report.reasoning}",
                endpoints=report.endpoints,
                conflict_behavior=self.conflict_behavior
            )

    def __repr__(self):
        return (f"EndpointRouter(priority={[e.value for e in self.endpoint_priority]}, "
                f"conflict_behavior={self.conflict_behavior}, conflicts={len(self.conflicts)})")
