"""
User location provider.

Wraps an injected `PositioningPlatform` behind a permission state machine:

    unknown -> {granted, denied, prompt, unsupported}

`granted` and `denied` can be reached from any prior state through `request_location`.
Failures never raise across this boundary; callers branch on `LocationResult.error.code`.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Hashable

from finditfast.config.settings import LocationSettings
from finditfast.domain.models import Location
from finditfast.location.platforms import (
    LocationErrorCode,
    LocationOptions,
    PermissionState,
    PositionError,
    PositioningPlatform,
    build_platform,
)

logger = logging.getLogger(__name__)

_MESSAGES: dict[LocationErrorCode, str] = {
    LocationErrorCode.UNSUPPORTED: "Geolocation is not supported on this platform.",
    LocationErrorCode.PERMISSION_DENIED: "Location access denied. Please enable location permissions.",
    LocationErrorCode.POSITION_UNAVAILABLE: "Location information unavailable.",
    LocationErrorCode.TIMEOUT: "Location request timed out. Please try again.",
    LocationErrorCode.UNKNOWN: "Unable to get your location.",
}


@dataclass(frozen=True)
class LocationError:
    code: LocationErrorCode
    message: str

    @classmethod
    def of(cls, code: LocationErrorCode, message: str | None = None) -> "LocationError":
        return cls(code=code, message=message or _MESSAGES[code])


@dataclass(frozen=True)
class LocationResult:
    location: Location | None = None
    error: LocationError | None = None

    @property
    def success(self) -> bool:
        return self.location is not None

    @property
    def error_code(self) -> LocationErrorCode | None:
        return self.error.code if self.error else None


class LocationWatch:
    """A continuous-tracking subscription. `stop()` is idempotent.

    Once `stop()` returns, no further callback is delivered, even if the platform had a
    fix already queued.
    """

    def __init__(self, provider: "LocationProvider", on_location: Callable[[Location], None],
                 on_error: Callable[[LocationError], None] | None) -> None:
        self._provider = provider
        self._on_location = on_location
        self._on_error = on_error
        self._handle: Hashable | None = None
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def _bind(self, handle: Hashable) -> None:
        self._handle = handle

    def _deliver_fix(self, location: Location) -> None:
        if not self._active:
            return
        self._provider._record_fix(location)
        try:
            self._on_location(location)
        except Exception:
            logger.exception("Location callback failed")

    def _deliver_error(self, error: LocationError) -> None:
        if not self._active:
            return
        self._provider._record_failure(error.code)
        if self._on_error is None:
            logger.warning("Location watch error: %s", error.message)
            return
        try:
            self._on_error(error)
        except Exception:
            logger.exception("Location error callback failed")

    def stop(self) -> None:
        if not self._active:
            return
        self._active = False
        platform = self._provider.platform
        if self._handle is not None and platform is not None:
            platform.clear_watch(self._handle)
        self._handle = None


class LocationProvider:
    """Obtains the user's position and tracks permission state."""

    def __init__(self, platform: PositioningPlatform | None, *, defaults: LocationOptions | None = None):
        self._platform = platform
        self._defaults = defaults or LocationOptions()
        self._permission = PermissionState.UNKNOWN
        self._last_known: Location | None = None

    @property
    def platform(self) -> PositioningPlatform | None:
        return self._platform

    @property
    def permission(self) -> PermissionState:
        return self._permission

    @property
    def last_known_location(self) -> Location | None:
        return self._last_known

    def _record_fix(self, location: Location) -> None:
        self._last_known = location
        self._permission = PermissionState.GRANTED

    def _record_failure(self, code: LocationErrorCode) -> None:
        # Only permission failures move the state; other failures say nothing about consent.
        if code == LocationErrorCode.PERMISSION_DENIED:
            self._permission = PermissionState.DENIED

    async def check_permission(self) -> PermissionState:
        """Query permission status without triggering a prompt."""
        if self._platform is None:
            self._permission = PermissionState.UNSUPPORTED
            return self._permission
        try:
            state = await self._platform.query_permission()
        except Exception as exc:
            logger.warning("Unable to check geolocation permission: %s", str(exc))
            state = None
        self._permission = state if state is not None else PermissionState.UNSUPPORTED
        return self._permission

    async def request_location(self, options: LocationOptions | None = None) -> LocationResult:
        """Ask the platform for one fix, bounded by `options.timeout_ms`."""
        opts = options or self._defaults
        if self._platform is None:
            return LocationResult(error=LocationError.of(LocationErrorCode.UNSUPPORTED))

        try:
            location = await asyncio.wait_for(
                self._platform.current_position(opts), timeout=opts.timeout_ms / 1000
            )
        except asyncio.TimeoutError:
            error = LocationError.of(LocationErrorCode.TIMEOUT)
        except PositionError as exc:
            error = LocationError.of(exc.code, str(exc) if str(exc) != exc.code.value else None)
        except Exception as exc:
            logger.warning("Unexpected geolocation failure: %s", str(exc))
            error = LocationError.of(LocationErrorCode.UNKNOWN, f"Location error: {exc}")
        else:
            self._record_fix(location)
            return LocationResult(location=location)

        self._record_failure(error.code)
        return LocationResult(error=error)

    def start_watch(
        self,
        on_location: Callable[[Location], None],
        on_error: Callable[[LocationError], None] | None = None,
        options: LocationOptions | None = None,
    ) -> LocationWatch:
        """Start continuous tracking; the caller owns the returned subscription."""
        opts = options or self._defaults
        sub = LocationWatch(self, on_location, on_error)
        if self._platform is None or not self._platform.supports_watch:
            sub._deliver_error(LocationError.of(LocationErrorCode.UNSUPPORTED))
            sub.stop()
            return sub

        handle = self._platform.start_watch(
            sub._deliver_fix,
            lambda exc: sub._deliver_error(LocationError.of(exc.code, str(exc))),
            opts,
        )
        sub._bind(handle)
        return sub

    @asynccontextmanager
    async def watch(
        self,
        on_location: Callable[[Location], None],
        on_error: Callable[[LocationError], None] | None = None,
        options: LocationOptions | None = None,
    ) -> AsyncIterator[LocationWatch]:
        """Scoped continuous tracking: the subscription is released on every exit path."""
        sub = self.start_watch(on_location, on_error, options)
        try:
            yield sub
        finally:
            sub.stop()


def build_location_provider(settings: LocationSettings) -> LocationProvider:
    """Construct a provider for the configured platform and default options."""
    return LocationProvider(build_platform(settings), defaults=LocationOptions.from_settings(settings))
