"""
Positioning platforms.

A platform is the host capability that actually produces a position fix. It is injected
into `LocationProvider` rather than looked up globally, so tests can substitute one.

Contract:
- `current_position(options)` returns a `Location` or raises `PositionError` with one of
  `PERMISSION_DENIED`, `POSITION_UNAVAILABLE`, `TIMEOUT`.
- `query_permission()` returns a `PermissionState`, or None when the platform cannot be
  asked without prompting.
- Platforms with `supports_watch` deliver fixes to callbacks between `start_watch` and
  `clear_watch`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Hashable

import httpx

from finditfast.config.settings import LocationSettings
from finditfast.core.http import get_json
from finditfast.domain.models import Location

logger = logging.getLogger(__name__)


class PermissionState(str, Enum):
    UNKNOWN = "unknown"
    GRANTED = "granted"
    DENIED = "denied"
    PROMPT = "prompt"
    UNSUPPORTED = "unsupported"


class LocationErrorCode(str, Enum):
    UNSUPPORTED = "UNSUPPORTED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    POSITION_UNAVAILABLE = "POSITION_UNAVAILABLE"
    TIMEOUT = "TIMEOUT"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class LocationOptions:
    enable_high_accuracy: bool = True
    timeout_ms: int = 10_000
    max_cached_age_ms: int = 300_000

    @classmethod
    def from_settings(cls, settings: LocationSettings) -> "LocationOptions":
        return cls(
            enable_high_accuracy=settings.enable_high_accuracy,
            timeout_ms=settings.timeout_ms,
            max_cached_age_ms=settings.max_cached_age_ms,
        )


class PositionError(Exception):
    """Raised by platforms when a fix cannot be produced."""

    def __init__(self, code: LocationErrorCode, message: str = "") -> None:
        self.code = code
        super().__init__(message or code.value)


FixCallback = Callable[[Location], None]
ErrorCallback = Callable[[PositionError], None]


class PositioningPlatform(ABC):
    supports_watch: bool = False

    @abstractmethod
    async def current_position(self, options: LocationOptions) -> Location:
        """Return a fix or raise `PositionError`."""

    async def query_permission(self) -> PermissionState | None:
        return None

    def start_watch(self, on_fix: FixCallback, on_error: ErrorCallback, options: LocationOptions) -> Hashable:
        raise NotImplementedError(f"{type(self).__name__} does not support continuous tracking")

    def clear_watch(self, handle: Hashable) -> None:
        raise NotImplementedError(f"{type(self).__name__} does not support continuous tracking")


class StaticPositioningPlatform(PositioningPlatform):
    """Returns a configured fixed position (CLI use, demos, tests)."""

    supports_watch = True

    def __init__(self, location: Location | None, *, permission: PermissionState = PermissionState.GRANTED):
        self._location = location
        self._permission = permission
        self._watches: dict[int, asyncio.Handle] = {}
        self._next_handle = 0

    @classmethod
    def from_settings(cls, settings: LocationSettings) -> "StaticPositioningPlatform":
        cfg = settings.static
        location = None
        if cfg.latitude is not None and cfg.longitude is not None:
            location = Location(latitude=cfg.latitude, longitude=cfg.longitude)
        return cls(location, permission=PermissionState(cfg.permission))

    async def query_permission(self) -> PermissionState | None:
        return self._permission

    def _resolve(self) -> Location:
        if self._permission == PermissionState.DENIED:
            raise PositionError(LocationErrorCode.PERMISSION_DENIED, "Location access denied.")
        if self._location is None:
            raise PositionError(LocationErrorCode.POSITION_UNAVAILABLE, "No position configured.")
        return self._location

    async def current_position(self, options: LocationOptions) -> Location:
        return self._resolve()

    def start_watch(self, on_fix: FixCallback, on_error: ErrorCallback, options: LocationOptions) -> Hashable:
        def deliver() -> None:
            self._watches.pop(handle, None)
            try:
                location = self._resolve()
            except PositionError as exc:
                on_error(exc)
                return
            on_fix(location)

        handle = self._next_handle
        self._next_handle += 1
        self._watches[handle] = asyncio.get_running_loop().call_soon(deliver)
        return handle

    def clear_watch(self, handle: Hashable) -> None:
        pending = self._watches.pop(handle, None)
        if pending is not None:
            pending.cancel()


def _parse_fix(payload: Any) -> Location:
    if not isinstance(payload, dict):
        raise ValueError("geolocation response is not an object")
    lat = payload.get("latitude", payload.get("lat"))
    lon = payload.get("longitude", payload.get("lon"))
    if lat is None or lon is None:
        raise ValueError("geolocation response lacks coordinates")
    return Location(latitude=float(lat), longitude=float(lon))


class HttpGeolocationPlatform(PositioningPlatform):
    """Resolves the host position from an HTTP geolocation endpoint.

    The endpoint must answer with JSON carrying `latitude`/`longitude` (or `lat`/`lon`).
    The last fix is reused while it is younger than `max_cached_age_ms`.
    """

    supports_watch = True

    def __init__(
        self,
        url: str,
        *,
        poll_interval_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._url = url
        self._poll_interval_seconds = float(poll_interval_seconds)
        self._transport = transport
        self._last_fix: Location | None = None
        self._last_fix_at: float | None = None
        self._tasks: dict[int, asyncio.Task[None]] = {}
        self._next_handle = 0

    @classmethod
    def from_settings(cls, settings: LocationSettings) -> "HttpGeolocationPlatform":
        return cls(settings.http.url, poll_interval_seconds=settings.http.poll_interval_seconds)

    def _cached(self, max_age_ms: int) -> Location | None:
        if self._last_fix is None or self._last_fix_at is None or max_age_ms <= 0:
            return None
        if (time.monotonic() - self._last_fix_at) * 1000 > max_age_ms:
            return None
        return self._last_fix

    async def _fetch(self, options: LocationOptions) -> Location:
        try:
            payload = await get_json(
                self._url,
                timeout_seconds=options.timeout_ms / 1000,
                transport=self._transport,
            )
        except httpx.TimeoutException as exc:
            raise PositionError(LocationErrorCode.TIMEOUT, "Location request timed out.") from exc
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code in (401, 403):
                raise PositionError(LocationErrorCode.PERMISSION_DENIED, "Location access denied.") from exc
            raise PositionError(
                LocationErrorCode.POSITION_UNAVAILABLE, f"Geolocation endpoint returned {exc.response.status_code}."
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise PositionError(LocationErrorCode.POSITION_UNAVAILABLE, "Location information unavailable.") from exc

        try:
            fix = _parse_fix(payload)
        except ValueError as exc:
            raise PositionError(LocationErrorCode.POSITION_UNAVAILABLE, str(exc)) from exc
        self._last_fix = fix
        self._last_fix_at = time.monotonic()
        return fix

    async def current_position(self, options: LocationOptions) -> Location:
        cached = self._cached(options.max_cached_age_ms)
        if cached is not None:
            return cached
        logger.info("Fetching position from %s", self._url)
        return await self._fetch(options)

    def start_watch(self, on_fix: FixCallback, on_error: ErrorCallback, options: LocationOptions) -> Hashable:
        async def poll() -> None:
            while True:
                try:
                    fix = await self.current_position(options)
                except PositionError as exc:
                    on_error(exc)
                except Exception as exc:
                    logger.warning("Unexpected geolocation failure while polling: %s", str(exc))
                    on_error(PositionError(LocationErrorCode.UNKNOWN, f"Location error: {exc}"))
                else:
                    on_fix(fix)
                await asyncio.sleep(self._poll_interval_seconds)

        handle = self._next_handle
        self._next_handle += 1
        self._tasks[handle] = asyncio.get_running_loop().create_task(poll())
        return handle

    def clear_watch(self, handle: Hashable) -> None:
        task = self._tasks.pop(handle, None)
        if task is not None:
            task.cancel()


def build_platform(settings: LocationSettings) -> PositioningPlatform | None:
    """Construct the configured platform; None means positioning is unsupported."""
    if settings.platform == "static":
        return StaticPositioningPlatform.from_settings(settings)
    if settings.platform == "http":
        return HttpGeolocationPlatform.from_settings(settings)
    return None
