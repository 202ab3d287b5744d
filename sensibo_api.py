#!/usr/bin/env python3
"""
Sensibo REST client

Thin aiohttp wrapper around the Sensibo v2 API. Every method performs one
request/response (set_ac_state may read the state first) and raises
SensiboAPIError on any failure; retrying is the orchestrator's job.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from config_models import ACState, Measurement

logger = logging.getLogger(__name__)


class SensiboAPIError(Exception):
    """Any failure talking to the Sensibo API"""


class SensiboAPI:
    def __init__(self, api_key: str, device_id: str, api_url: str, request_timeout: float = 5.0,
                 session: Optional[aiohttp.ClientSession] = None):
        self.api_key = api_key
        self.device_id = device_id
        self.base_url = api_url.rstrip('/')
        self.request_timeout = request_timeout
        self.session = session

    @classmethod
    def from_config(cls, config) -> 'SensiboAPI':
        return cls(config.api_key, config.device_id, config.api_url, config.request_timeout)

    async def connect(self):
        if self.session is None or self.session.closed:
            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers={'Accept-Encoding': 'gzip, deflate'}
            )

    async def close(self):
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _pod_url(self, suffix: str) -> str:
        return f"{self.base_url}/pods/{self.device_id}/{suffix}"

    async def _request(self, method: str, suffix: str, params: Optional[Dict[str, Any]] = None,
                       payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        await self.connect()
        query = {'apiKey': self.api_key}
        if params:
            query.update(params)
        try:
            async with self.session.request(method, self._pod_url(suffix), params=query, json=payload) as resp:
                resp.raise_for_status()
                data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise SensiboAPIError(f"{method} {suffix} failed: {e!r}") from e

        if not isinstance(data, dict):
            raise SensiboAPIError(f"{method} {suffix} returned unexpected payload: {data!r}")
        if data.get('status', 'success') != 'success':
            raise SensiboAPIError(f"API returned status: {data.get('status')}")
        return data

    async def get_current_state(self) -> ACState:
        data = await self._request('GET', 'acStates', params={'limit': 1})
        try:
            raw_state = data['result'][0]['acState']
        except (KeyError, IndexError, TypeError) as e:
            raise SensiboAPIError(f"Malformed AC state response: {data!r}") from e
        logger.debug(f"Current AC state retrieved: {raw_state}")
        return ACState.from_dict(raw_state)

    async def set_ac_state(self, partial: Dict[str, Any], current_state: Optional[ACState] = None) -> ACState:
        """
        Merge `partial` (API field names) into the current state and POST it.

        Args:
            partial: Fields to change, e.g. {'targetTemperature': 24}
            current_state: Known current state, to skip the extra GET

        Returns:
            The state that was sent
        """
        base_state = current_state or await self.get_current_state()
        new_state = base_state.to_dict()
        new_state.update(partial)
        await self._request('POST', 'acStates', payload={'acState': new_state})
        logger.info(f"AC state updated successfully: {new_state}")
        return ACState.from_dict(new_state)

    async def set_temperature(self, temperature: int) -> ACState:
        state = await self.set_ac_state({'targetTemperature': temperature})
        logger.info(f"Temperature set to: {temperature}°C")
        return state

    async def set_power(self, on: bool) -> ACState:
        return await self.set_ac_state({'on': on})

    async def toggle_power(self) -> bool:
        """Flip the power flag and return the new value"""
        current = await self.get_current_state()
        new_value = not current.on
        await self.set_ac_state({'on': new_value}, current_state=current)
        return new_value

    async def get_room_temperature(self) -> float:
        data = await self._request('GET', 'measurements', params={'fields': '*'})
        measurements = data.get('result') or []
        if not measurements:
            raise SensiboAPIError("No temperature measurements available")
        try:
            measurement = Measurement.from_dict(measurements[0])
        except (KeyError, TypeError, ValueError) as e:
            raise SensiboAPIError(f"Malformed measurement: {measurements[0]!r}") from e
        logger.info(f"Current room temperature: {measurement.temperature}°C")
        return measurement.temperature

    async def sync_power_state(self, actual_state: bool):
        """Tell Sensibo the AC is on/off without sending an IR command"""
        await self._request('PATCH', 'acStates/on',
                            payload={'newValue': actual_state, 'reason': 'StateCorrectionByUser'})
        logger.info(f"AC state synchronized to: {'ON' if actual_state else 'OFF'}")
