"""
Turn-scoped transcript aggregation.

Fragments stream in per side (caller, assistant) and are concatenated in arrival
order. At turn-complete both buffers are trimmed, every non-empty one becomes a
ConversationEntry, and both are reset.

The routing heuristic is a RouteIntentRule: keyword trigger plus a regex that
strips everything up to the destination. It is deliberately simple and can be
replaced wholesale through the constructor.
"""

import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Pattern, Tuple

from logging_setup import Component, get_logger

from .models import ConversationEntry, Side

DEFAULT_ROUTE_KEYWORDS: Tuple[str, ...] = ("to", "route", "go", "navigate", "direction")
DEFAULT_DESTINATION_PATTERN = r".*(to|directions to)\s+"


@dataclass
class RouteIntentRule:
    """
    Keyword-triggered destination extraction.

    Triggers when any keyword is a substring of the lowercased text. The
    destination is what remains after removing the longest prefix matched by
    `destination_pattern`; it must be longer than `min_destination_length`.
    """

    keywords: Tuple[str, ...] = DEFAULT_ROUTE_KEYWORDS
    destination_pattern: str = DEFAULT_DESTINATION_PATTERN
    min_destination_length: int = 2
    _compiled: Pattern = field(init=False, repr=False)

    def __post_init__(self):
        self._compiled = re.compile(self.destination_pattern, re.IGNORECASE)

    def match(self, text: str) -> Optional[str]:
        """Return the destination, or None when the text is not a routing request."""
        if not text:
            return None
        lowered = text.lower()
        if not any(keyword in lowered for keyword in self.keywords):
            return None
        destination = self._compiled.sub("", lowered, count=1).strip()
        if len(destination) > self.min_destination_length:
            return destination
        return None


class TranscriptionAggregator:
    """Per-turn TranscriptBuffers for the caller and the assistant."""

    def __init__(
        self,
        route_rule: Optional[RouteIntentRule] = None,
        on_route_request: Optional[Callable[[str], None]] = None,
        session_id: Optional[str] = None,
    ):
        self.route_rule = route_rule
        self.on_route_request = on_route_request
        self._buffers: Dict[Side, List[str]] = {Side.CALLER: [], Side.ASSISTANT: []}
        self.logger = get_logger(Component.TRANSCRIPTION, session_id=session_id)

    def append_fragment(self, side: Side, text: str) -> None:
        if side not in self._buffers:
            raise ValueError(f"transcripts are only kept for caller and assistant, not {side.value}")
        if text:
            self._buffers[side].append(text)

    def current_text(self, side: Side) -> str:
        """In-progress text for `side` in the current turn, untrimmed."""
        return "".join(self._buffers[side])

    def complete_turn(self) -> List[ConversationEntry]:
        """
        Finalize the turn: caller entry first, then assistant, skipping empty sides.
        Buffers are reset whatever happens in the routing heuristic.
        """
        caller_text = self.current_text(Side.CALLER).strip()
        assistant_text = self.current_text(Side.ASSISTANT).strip()
        self.reset()

        entries: List[ConversationEntry] = []
        if caller_text:
            entries.append(ConversationEntry(side=Side.CALLER, text=caller_text))
        if assistant_text:
            entries.append(ConversationEntry(side=Side.ASSISTANT, text=assistant_text))

        if entries:
            self.logger.debug_pii("Turn finalized", caller=caller_text, assistant=assistant_text)

        if caller_text and self.route_rule is not None and self.on_route_request is not None:
            destination = self.route_rule.match(caller_text)
            if destination:
                self.logger.debug_pii("Routing intent detected", destination=destination)
                self.on_route_request(destination)

        return entries

    def reset(self) -> None:
        for buffer in self._buffers.values():
            buffer.clear()
