#!/usr/bin/env python3
"""
Configuration and Data Models for the Sensibo AC Controller

This module provides dataclasses for the AC state and room measurements
returned by the Sensibo API, the immutable retry/temperature settings used
by the command orchestrator, and the loader that validates the user's
config.py module.
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Any

# Set up logging
logger = logging.getLogger(__name__)


DEFAULT_API_URL = "https://home.sensibo.com/api/v2"


class ConfigurationError(Exception):
    """Raised when config.py contains one or more invalid settings"""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(f"Configuration errors: {', '.join(self.errors)}")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry settings applied to every orchestrated action"""
    max_attempts: int = 3
    base_delay: float = 2.0   # seconds before the first retry
    max_delay: float = 10.0   # cap for any single wait
    jitter: float = 1.0       # upper bound of the random jitter, seconds

    def delay_for(self, retry_number: int, jitter_value: float = 0.0) -> float:
        """
        Compute the wait before retry number `retry_number` (1 = first retry).

        Args:
            retry_number: 1-based retry counter
            jitter_value: Random jitter already drawn for this attempt

        Returns:
            Delay in seconds, never above max_delay
        """
        delay = self.base_delay * (2 ** (retry_number - 1)) + jitter_value
        return min(delay, self.max_delay)


@dataclass(frozen=True)
class TempBounds:
    """Inclusive range of temperatures the orchestrator accepts"""
    min_temp: int = 16
    max_temp: int = 30

    def contains(self, value: int) -> bool:
        return self.min_temp <= value <= self.max_temp


@dataclass
class ACState:
    """
    Represents the AC state as reported by the Sensibo API

    Fields the device did not report stay None and are left out of to_dict().
    """
    on: bool
    mode: Optional[str] = None
    fan_level: Optional[str] = None
    target_temperature: Optional[int] = None
    temperature_unit: Optional[str] = None
    swing: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _API_FIELDS = (
        ('mode', 'mode'),
        ('fan_level', 'fanLevel'),
        ('target_temperature', 'targetTemperature'),
        ('temperature_unit', 'temperatureUnit'),
        ('swing', 'swing'),
    )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ACState':
        """Create ACState from API dictionary with graceful handling of missing fields"""
        known = {'on'} | {api_name for _, api_name in cls._API_FIELDS}
        return cls(
            on=bool(data.get('on', False)),
            extra={k: v for k, v in data.items() if k not in known},
            **{attr: data.get(api_name) for attr, api_name in cls._API_FIELDS}
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize back to the API's camelCase representation"""
        data = dict(self.extra)
        data['on'] = self.on
        for attr, api_name in self._API_FIELDS:
            value = getattr(self, attr)
            if value is not None:
                data[api_name] = value
        return data


@dataclass
class Measurement:
    """Represents one room measurement from the Sensibo API"""
    temperature: float
    humidity: float = 0.0
    seconds_ago: int = 0
    time: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Measurement':
        """Create Measurement from API dictionary"""
        time_info = data.get('time') or {}
        return cls(
            temperature=float(data['temperature']),
            humidity=float(data.get('humidity', 0.0)),
            seconds_ago=time_info.get('secondsAgo', 0),
            time=time_info.get('time', '')
        )


@dataclass(frozen=True)
class AppConfig:
    """Immutable application configuration loaded once at startup"""
    api_key: str
    device_id: str
    api_url: str = DEFAULT_API_URL
    temp_bounds: TempBounds = field(default_factory=TempBounds)
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    voice_volume: int = 100
    voice_timeout: float = 15.0
    voice_command: Optional[str] = None
    request_timeout: float = 5.0
    log_level: str = "INFO"
    log_file: Optional[str] = "ac-controller.log"

    def masked(self) -> Dict[str, Any]:
        """Dictionary view safe for logging (API key hidden)"""
        data = asdict(self)
        if self.api_key:
            data['api_key'] = self.api_key[:4] + '…'
        return data


def _read(module: Any, name: str, default: Any = None) -> Any:
    value = getattr(module, name, default)
    if isinstance(value, str):
        value = value.strip()
    return value


def _as_number(module: Any, name: str, default: Any, cast, errors: List[str]):
    raw = _read(module, name, default)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except (TypeError, ValueError):
        errors.append(f"{name} must be a number, got {raw!r}")
        return default


def load_app_config(module: Any) -> AppConfig:
    """
    Build a validated AppConfig from a config module (or any attribute holder)

    Args:
        module: Object exposing SENSIBO_API_KEY, SENSIBO_DEVICE_ID, ... attributes

    Returns:
        AppConfig

    Raises:
        ConfigurationError: with every problem found, not just the first one
    """
    errors: List[str] = []

    api_key = _read(module, 'SENSIBO_API_KEY', '') or ''
    device_id = _read(module, 'SENSIBO_DEVICE_ID', '') or ''
    if not api_key:
        errors.append("SENSIBO_API_KEY is required")
    if not device_id:
        errors.append("SENSIBO_DEVICE_ID is required")

    min_temp = _as_number(module, 'MIN_TEMP', 16, int, errors)
    max_temp = _as_number(module, 'MAX_TEMP', 30, int, errors)
    if min_temp > max_temp:
        errors.append(f"MIN_TEMP ({min_temp}) must not exceed MAX_TEMP ({max_temp})")

    max_retries = _as_number(module, 'MAX_RETRIES', 3, int, errors)
    retry_delay = _as_number(module, 'RETRY_DELAY', 2.0, float, errors)
    retry_max_delay = _as_number(module, 'RETRY_MAX_DELAY', 10.0, float, errors)
    retry_jitter = _as_number(module, 'RETRY_JITTER', 1.0, float, errors)
    if max_retries < 1:
        errors.append("MAX_RETRIES must be at least 1")
    if retry_delay < 0 or retry_max_delay < 0 or retry_jitter < 0:
        errors.append("RETRY_DELAY, RETRY_MAX_DELAY and RETRY_JITTER must not be negative")
    elif retry_max_delay < retry_delay:
        errors.append("RETRY_MAX_DELAY must not be smaller than RETRY_DELAY")

    voice_volume = _as_number(module, 'VOICE_VOLUME', 100, int, errors)
    if not 0 <= voice_volume <= 100:
        errors.append("VOICE_VOLUME must be between 0 and 100")
    voice_timeout = _as_number(module, 'VOICE_TIMEOUT', 15.0, float, errors)
    request_timeout = _as_number(module, 'REQUEST_TIMEOUT', 5.0, float, errors)
    if voice_timeout <= 0 or request_timeout <= 0:
        errors.append("VOICE_TIMEOUT and REQUEST_TIMEOUT must be positive")

    if errors:
        raise ConfigurationError(errors)

    config = AppConfig(
        api_key=api_key,
        device_id=device_id,
        api_url=(_read(module, 'SENSIBO_API_URL', '') or DEFAULT_API_URL).rstrip('/'),
        temp_bounds=TempBounds(min_temp=min_temp, max_temp=max_temp),
        retry_policy=RetryPolicy(
            max_attempts=max_retries,
            base_delay=retry_delay,
            max_delay=retry_max_delay,
            jitter=retry_jitter
        ),
        voice_volume=voice_volume,
        voice_timeout=voice_timeout,
        voice_command=_read(module, 'VOICE_COMMAND', None) or None,
        request_timeout=request_timeout,
        log_level=(_read(module, 'LOG_LEVEL', 'INFO') or 'INFO').upper(),
        log_file=_read(module, 'LOG_FILE', 'ac-controller.log') or None
    )
    logger.debug(f"Configuration loaded: {config.masked()}")
    return config
