"""
One-shot grounded lookups next to the live stream.

Traffic status backs the checkLocalTraffic tool; route guidance backs the routing
side effect of a finalized caller turn. Both are single generate_content calls
with Google Search grounding. Errors from the remote service propagate; the
callers decide how they surface.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from google import genai
from google.genai import types

from logging_setup import Component, get_logger

from .models import GeoCoordinates


logger = get_logger(Component.CONTEXT)


@dataclass
class GroundedAnswer:
    text: str
    grounding: List[Dict[str, Any]] = field(default_factory=list)


def _grounding_chunks(response) -> List[Dict[str, Any]]:
    """Web sources from the first candidate's grounding metadata, if any."""
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return []
    metadata = getattr(candidates[0], "grounding_metadata", None)
    chunks = getattr(metadata, "grounding_chunks", None) or []
    sources = []
    for chunk in chunks:
        web = getattr(chunk, "web", None)
        if web is not None:
            sources.append({"uri": getattr(web, "uri", None), "title": getattr(web, "title", None)})
    return sources


def _describe(coordinates: Optional[GeoCoordinates]) -> str:
    if coordinates is None:
        return "an unknown position"
    return f"latitude {coordinates.latitude:.5f}, longitude {coordinates.longitude:.5f}"


class ContextService:
    def __init__(self, client: genai.Client, model: str = "gemini-2.5-flash"):
        self.client = client
        self.model = model

    @classmethod
    def from_api_key(cls, api_key: str, model: str = "gemini-2.5-flash") -> "ContextService":
        return cls(genai.Client(api_key=api_key), model=model)

    async def _ask(self, purpose: str, prompt: str) -> GroundedAnswer:
        start_ts = time.time()
        response = await self.client.aio.models.generate_content(
            model=self.model,
            contents=prompt,
            config=types.GenerateContentConfig(
                tools=[types.Tool(google_search=types.GoogleSearch())],
            ),
        )
        answer = GroundedAnswer(text=(response.text or "").strip(), grounding=_grounding_chunks(response))
        logger.info(
            "Context lookup completed",
            purpose=purpose,
            model=self.model,
            sources=len(answer.grounding),
            latency_ms=int((time.time() - start_ts) * 1000),
        )
        return answer

    async def get_traffic_status(self, location: str, coordinates: Optional[GeoCoordinates]) -> str:
        """Short natural-language traffic status for `location` near the driver."""
        prompt = (
            f"The driver is at {_describe(coordinates)}. "
            f"Give a two-sentence live traffic status for {location or 'the immediate area'}: "
            "congestion level and any incidents."
        )
        answer = await self._ask("traffic", prompt)
        return answer.text or "No traffic information available."

    async def get_route(self, coordinates: GeoCoordinates, destination: str) -> GroundedAnswer:
        """Best driving route from the coordinates to `destination`."""
        prompt = (
            f"I am driving from {_describe(coordinates)}. "
            f"What is the best route to {destination} right now? "
            "Answer in at most three short sentences with the main roads and an estimated time."
        )
        return await self._ask("route", prompt)
