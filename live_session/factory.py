"""
Wiring for a SessionController backed by real devices and remote services.
"""

from __future__ import annotations

from google import genai

from logging_setup import Component, get_logger

from .capture import SoundDeviceCaptureSource
from .config import LiveSessionConfig
from .connection import ConnectionConfig, GeminiLiveConnection
from .context_service import ContextService
from .controller import SessionController
from .instructions import get_instructions, get_nudge_text, get_voice
from .location import IpLocationProvider, LocationProvider, StaticLocationProvider
from .playback import SoundDeviceOutput
from .relay_client import RelayClient
from .tools import TOOL_DECLARATIONS, build_default_handlers
from .transcription import RouteIntentRule


logger = get_logger(Component.SESSION_CONTROLLER)


def build_location_provider(config: LiveSessionConfig) -> LocationProvider:
    if config.has_static_location:
        return StaticLocationProvider(config.latitude, config.longitude)
    return IpLocationProvider(config.location_url)


def build_controller(config: LiveSessionConfig, relay: RelayClient = None) -> SessionController:
    """
    Controller with sounddevice capture/output, the Gemini Live transport,
    the relay-backed tool table and grounded route lookups.
    """
    client = genai.Client(api_key=config.gemini_api_key)
    relay = relay or RelayClient(config.relay_url, timeout_seconds=config.relay_timeout_seconds)
    context_service = ContextService(client, model=config.context_model)

    connection_config = ConnectionConfig(
        model=config.live_model,
        system_instruction=get_instructions(config.scenario),
        voice_name=get_voice(config.scenario, default=config.voice_name),
        tools=TOOL_DECLARATIONS,
        input_sample_rate=config.capture_sample_rate,
    )

    logger.info(
        "Controller configured",
        model=config.live_model,
        scenario=config.scenario,
        voice=connection_config.voice_name,
        gain=config.effective_gain,
        relay_configured=relay.configured,
        static_location=config.has_static_location,
    )

    return SessionController(
        capture_source=SoundDeviceCaptureSource(config.capture_sample_rate, config.capture_frame_size),
        location_provider=build_location_provider(config),
        connection_factory=lambda session_id: GeminiLiveConnection(client, session_id=session_id),
        output_factory=lambda: SoundDeviceOutput.open(sample_rate=config.playback_sample_rate),
        connection_config=connection_config,
        tool_handlers=build_default_handlers(relay, context_service),
        context_service=context_service,
        gain=config.effective_gain,
        route_rule=RouteIntentRule(),
        nudge_text=get_nudge_text(config.scenario),
        nudge_on_open=config.nudge_on_open,
        nudge_interval_seconds=config.nudge_interval_seconds,
        playback_sample_rate=config.playback_sample_rate,
    )
