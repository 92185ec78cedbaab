"""
Signal relay client.

The relay is a single HTTP endpoint (SYSTEM_CONTROL_URL) that fronts the
infrastructure sheet and the GPIO board. Every operation is a GET with query
parameters. Tool handlers call it while the session streams, so nothing here
raises on network failure: telemetry becomes an error mapping, actuation a
failure string, state logging False, log read-back None.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Dict, List, Mapping, Optional, Tuple

import aiohttp

from logging_setup import Component, get_logger


logger = get_logger(Component.RELAY)

STATE_LOG_FIELDS = ("d1", "d2", "d3", "d4", "d5", "d6", "d7")


class RelayClient:
    def __init__(self, base_url: Optional[str], timeout_seconds: float = 10.0):
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    async def _get(self, params: Mapping[str, str]) -> Tuple[int, str]:
        """One GET against the relay. Returns (status, body text)."""
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with aiohttp.ClientSession(timeout=timeout) as s:
            async with s.get(self.base_url, params=dict(params)) as resp:
                return resp.status, await resp.text()

    async def _request(self, action: str, params: Mapping[str, str]) -> Optional[Tuple[int, str]]:
        if not self.configured:
            logger.warning("SYSTEM_CONTROL_URL not set; skipping relay request", action=action)
            return None

        start_ts = time.time()
        try:
            status, body = await self._get(params)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.warning(
                "Relay request failed",
                action=action,
                error=str(e),
                error_type=type(e).__name__,
                latency_ms=int((time.time() - start_ts) * 1000),
            )
            return None

        logger.info(
            "Relay response",
            action=action,
            status=status,
            latency_ms=int((time.time() - start_ts) * 1000),
        )
        return status, body

    async def fetch_telemetry(self) -> Dict[str, Any]:
        """Current infrastructure reading (columns B-H), or {"error": ...}."""
        response = await self._request("telemetry", {"action": "telemetry"})
        if response is None:
            return {"error": "telemetry unavailable"}
        status, body = response
        if not 200 <= status < 300:
            return {"error": f"telemetry unavailable (HTTP {status})"}
        try:
            data = json.loads(body)
        except ValueError:
            return {"error": "telemetry unreadable"}
        if not isinstance(data, dict):
            return {"values": data}
        return data

    async def actuate_signals(self, sig1: int, sig2: int, sig3: int, logic_summary: str) -> str:
        """Switch the three GPIO signals. Returns an acknowledgement or a failure string."""
        params = {
            "action": "gpio",
            "sig1": str(sig1),
            "sig2": str(sig2),
            "sig3": str(sig3),
            "logicSummary": logic_summary,
        }
        response = await self._request("gpio", params)
        if response is None:
            return "GPIO orders failed: relay unreachable"
        status, body = response
        if not 200 <= status < 300:
            return f"GPIO orders failed: HTTP {status}"
        return body.strip() or f"GPIO orders applied: {sig1}{sig2}{sig3}"

    async def log_state(self, fields: Mapping[str, str]) -> bool:
        """Write one row of the seven state columns. True on a 2xx answer."""
        params = {key: str(fields.get(key, "")) for key in STATE_LOG_FIELDS}
        response = await self._request("log_state", params)
        return response is not None and 200 <= response[0] < 300

    async def get_command_logs(self) -> Optional[List[Any]]:
        """Read back the persisted command log, or None when it is unavailable."""
        response = await self._request("command_logs", {})
        if response is None:
            return None
        status, body = response
        if not 200 <= status < 300:
            return None
        try:
            data = json.loads(body)
        except ValueError:
            logger.warning("Relay command log is not JSON")
            return None
        if isinstance(data, dict):
            data = data.get("logs", data.get("rows", []))
        return data if isinstance(data, list) else None
