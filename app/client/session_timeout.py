"""Client-side session timeout: warn before expiry, log out at expiry.

States::

    STOPPED --start()--> ACTIVE --warning timer--> WARNING_SHOWN --extend() ok--> ACTIVE
                           |                           |
                           +-----hard-logout timer-----+--extend() fails--> LOGGED_OUT

LOGGED_OUT is terminal until the next start(); stop() returns to STOPPED.

Both timers are single-shot ``loop.call_later`` handles. The countdown that
runs while the warning is shown only reports remaining seconds for display;
expiry is always decided by the hard-logout timer.
"""
import asyncio
import enum
import logging
from typing import Awaitable, Callable, Optional

from app.client.api_client import TokenStore

logger = logging.getLogger(__name__)

SESSION_DURATION_SECONDS = 55 * 60
WARNING_WINDOW_SECONDS = 2 * 60


class SessionState(str, enum.Enum):
    STOPPED = "stopped"
    ACTIVE = "active"
    WARNING_SHOWN = "warning_shown"
    LOGGED_OUT = "logged_out"


class SessionTimeoutCoordinator:
    def __init__(
        self,
        refresh: Callable[[], Awaitable[bool]],
        session_duration: float = SESSION_DURATION_SECONDS,
        warning_window: float = WARNING_WINDOW_SECONDS,
        on_warning: Optional[Callable[[int], None]] = None,
        on_tick: Optional[Callable[[int], None]] = None,
        on_logout: Optional[Callable[[], None]] = None,
        tick_interval: float = 1.0,
        store: Optional[TokenStore] = None,
    ):
        if warning_window >= session_duration:
            raise ValueError("warning_window must be shorter than session_duration")
        self._refresh = refresh
        self.session_duration = session_duration
        self.warning_window = warning_window
        self.tick_interval = tick_interval
        self._on_warning = on_warning
        self._on_tick = on_tick
        self._on_logout = on_logout
        self.store = store

        self.state = SessionState.STOPPED
        self._warning_handle: Optional[asyncio.TimerHandle] = None
        self._logout_handle: Optional[asyncio.TimerHandle] = None
        self._countdown: Optional[asyncio.Task] = None
        self._expires_at: Optional[float] = None

    @property
    def seconds_remaining(self) -> int:
        if self._expires_at is None:
            return 0
        loop = asyncio.get_running_loop()
        return max(0, int(round(self._expires_at - loop.time())))

    def start(self) -> None:
        """Schedule both timers from now. Call on login and after every refresh."""
        self._cancel_all()
        loop = asyncio.get_running_loop()
        self._expires_at = loop.time() + self.session_duration
        self._warning_handle = loop.call_later(self.session_duration - self.warning_window, self._show_warning)
        self._logout_handle = loop.call_later(self.session_duration, self._expire)
        self.state = SessionState.ACTIVE

    def stop(self) -> None:
        """Cancel timers without logging out (unmount)."""
        self._cancel_all()
        self._expires_at = None
        if self.state != SessionState.LOGGED_OUT:
            self.state = SessionState.STOPPED

    async def extend(self) -> bool:
        """User accepted the extension: refresh and reschedule, or log out."""
        if self.state not in (SessionState.ACTIVE, SessionState.WARNING_SHOWN):
            return False
        try:
            refreshed = await self._refresh()
        except Exception:
            logger.exception("Session refresh raised")
            refreshed = False

        # The hard-logout timer or stop() may have run while the refresh was in flight.
        if self.state == SessionState.LOGGED_OUT:
            if self.store is not None:
                self.store.clear()
            return False
        if self.state == SessionState.STOPPED:
            return False

        if refreshed:
            self.start()
            return True
        self.force_logout()
        return False

    def force_logout(self) -> None:
        self._cancel_all()
        self._expires_at = None
        if self.store is not None:
            self.store.clear()
        if self.state != SessionState.LOGGED_OUT:
            self.state = SessionState.LOGGED_OUT
            if self._on_logout:
                self._on_logout()

    def _show_warning(self) -> None:
        self._warning_handle = None
        if self.state != SessionState.ACTIVE:
            return
        self.state = SessionState.WARNING_SHOWN
        if self._on_warning:
            self._on_warning(self.seconds_remaining)
        self._countdown = asyncio.ensure_future(self._run_countdown())

    async def _run_countdown(self) -> None:
        while self.state == SessionState.WARNING_SHOWN:
            if self._on_tick:
                self._on_tick(self.seconds_remaining)
            await asyncio.sleep(self.tick_interval)

    def _expire(self) -> None:
        self._logout_handle = None
        logger.info("Session expired without extension")
        self.force_logout()

    def _cancel_all(self) -> None:
        for handle in (self._warning_handle, self._logout_handle):
            if handle is not None:
                handle.cancel()
        self._warning_handle = None
        self._logout_handle = None
        if self._countdown is not None and not self._countdown.done():
            self._countdown.cancel()
        self._countdown = None
