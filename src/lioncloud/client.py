"""La Marzocco espresso machine cloud client.

Provides programmatic access to a single La Marzocco machine via the
customer-app cloud API.  The :class:`Client` class is the main entry point::

    import asyncio
    from lioncloud import Client, DoseMode

    client = Client("email@example.com", "password")
    await client.connect()
    print(client.get_status())

    await client.set_mode(DoseMode.DOSE1)
    await client.set_dose("Dose1", 18.5)

    # Poll in the background and get notified when something changes
    client.register_status_change_callback(print)
    poller = client.start_polling(30)
    await poller.wait()
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
import time
from collections.abc import Callable

from lioncloud._constants import (
    API_BASE,
    CMD_BACKFLUSH_START,
    CMD_BBW_CHANGE_MODE,
    CMD_BBW_SETTING_DOSES,
    CMD_CHANGE_MODE,
    THINGS_PATH,
)
from lioncloud._http import ApiResponse
from lioncloud.errors import (
    ArgumentInvalidError,
    CommandFailedError,
    LionCloudError,
    MalformedResponseError,
    NoDeviceFoundError,
)
from lioncloud.executor import CommandExecutor
from lioncloud.models import DeviceSnapshot, DoseMode, has_changed, parse_dashboard
from lioncloud.session import SessionManager

_LOGGER = logging.getLogger(__name__)

StatusCallback = Callable[[DeviceSnapshot], None]


class Client:
    """La Marzocco cloud client for the first machine bound to an account.

    Holds three independent pieces of state: the installation identity and
    token (inside :attr:`session`) and the cached :class:`DeviceSnapshot`.
    All operations are safe to run concurrently as separate tasks.
    """

    def __init__(
        self,
        username: str,
        password: str,
        *,
        base_url: str = API_BASE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._session = SessionManager(username, password, base_url=base_url, clock=clock)
        self._executor = CommandExecutor(self._session, base_url=base_url)
        self._clock = clock
        self._serial = ""
        self._model = ""
        self._snapshot = DeviceSnapshot()
        self._on_change: StatusCallback | None = None
        self._dose_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def session(self) -> SessionManager:
        """Identity and token state."""
        return self._session

    @property
    def executor(self) -> CommandExecutor:
        """Authenticated request path."""
        return self._executor

    @property
    def serial(self) -> str:
        """Serial number of the managed machine (empty before connecting)."""
        return self._serial

    @property
    def model(self) -> str:
        """Model name of the managed machine."""
        return self._model

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Register, sign in, discover the machine and fetch its state.

        Raises a :class:`~lioncloud.errors.LionCloudError` subclass on the
        first step that fails.
        """
        await self._session.ensure_registered()
        await self._session.authenticate()
        await self.fetch_device_identity()
        await self.poll_once()

    async def fetch_device_identity(self) -> tuple[str, str]:
        """Select the first machine on the account.

        Returns ``(serial, model)``.
        """
        resp = await self._executor.execute("GET", THINGS_PATH)
        _raise_for_status(resp, "Fetch things")
        things = resp.json()
        if not isinstance(things, list):
            raise MalformedResponseError("Expected a list of things.")
        if not things:
            raise NoDeviceFoundError("No machines found in account.")
        first = things[0] if isinstance(things[0], dict) else {}
        serial = first.get("serialNumber")
        if not isinstance(serial, str) or not serial:
            raise MalformedResponseError("First thing has no serialNumber.")
        self._serial = serial
        self._model = str(first.get("modelName") or "")
        _LOGGER.info("Found machine %s (%s)", self._serial, self._model)
        return self._serial, self._model

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> DeviceSnapshot:
        """Return the latest cached snapshot without any I/O."""
        return dataclasses.replace(
            self._snapshot,
            serial=self._serial or None,
            model=self._model or None,
            connected=self._session.token is not None,
        )

    def register_status_change_callback(self, callback: StatusCallback | None) -> None:
        """Set the single callback invoked when the snapshot changes.

        The callback runs synchronously in the polling or command task and
        must not block.  Registering again replaces the previous callback.
        """
        self._on_change = callback

    async def fetch_dashboard(self) -> object:
        """Fetch the raw dashboard payload for the managed machine."""
        resp = await self._executor.execute("GET", self._thing_path("dashboard"))
        _raise_for_status(resp, "Fetch dashboard")
        _LOGGER.debug("Dashboard response: %s", resp.text)
        return resp.json()

    async def poll_once(self) -> bool:
        """Refresh the snapshot from the dashboard.

        Returns ``True`` and notifies the callback if an observable field
        changed.  On failure the snapshot keeps its last known-good value.
        """
        payload = await self.fetch_dashboard()
        parsed = parse_dashboard(payload, now=self._clock())
        previous = self._snapshot
        self._snapshot = parsed
        changed = has_changed(previous, parsed)
        if changed:
            self._notify()
        return changed

    async def poll_loop(self, interval: float, stop: asyncio.Event | None = None) -> None:
        """Poll every *interval* seconds until *stop* is set.

        Poll failures are logged and do not end the loop.
        """
        if stop is None:
            stop = asyncio.Event()
        while not stop.is_set():
            try:
                async with asyncio.timeout(interval):
                    await stop.wait()
                return
            except TimeoutError:
                pass
            try:
                await self.poll_once()
            except LionCloudError as e:
                _LOGGER.warning("Failed to poll status: %s", e)

    def start_polling(self, interval: float, stop: asyncio.Event | None = None) -> Poller:
        """Run :meth:`poll_loop` as a background task."""
        task = asyncio.create_task(self.poll_loop(interval, stop))
        return Poller(task)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def set_mode(self, mode: DoseMode) -> None:
        """Switch the brew-by-weight mode."""
        await self._command(CMD_BBW_CHANGE_MODE, {"mode": mode.value}, "Set mode")
        self._update(mode=mode)
        _LOGGER.info("Mode set to %s", mode.value)

    async def set_dose(self, dose_id: str, grams: float) -> None:
        """Set the target weight of ``"Dose1"`` or ``"Dose2"``.

        The weight is truncated to one decimal.  The API expects both doses,
        so the other one is sent with its cached value (``0`` if unknown).
        Range checks are left to the caller (see :func:`validate_dose`).
        """
        if dose_id not in (DoseMode.DOSE1.value, DoseMode.DOSE2.value):
            raise ArgumentInvalidError(f"Unknown dose '{dose_id}'. Expected: Dose1 | Dose2")
        weight = truncate_weight(grams)
        # Both doses are sent, so concurrent writes must not interleave.
        async with self._dose_lock:
            current = self._snapshot
            doses = {
                DoseMode.DOSE1.value: current.dose1 or 0.0,
                DoseMode.DOSE2.value: current.dose2 or 0.0,
            }
            doses[dose_id] = weight
            await self._command(CMD_BBW_SETTING_DOSES, {"doses": doses}, "Set dose")
            if dose_id == DoseMode.DOSE1.value:
                self._update(dose1=weight)
            else:
                self._update(dose2=weight)
        _LOGGER.info("%s set to %.1f g", dose_id, weight)

    async def set_power(self, on: bool) -> None:
        """Turn the machine on or put it in standby."""
        mode = "BrewingMode" if on else "StandBy"
        await self._command(CMD_CHANGE_MODE, {"mode": mode}, "Set power")
        self._update(machine_on=on)
        _LOGGER.info("Machine power set to %s", "on" if on else "standby")

    async def start_cleaning_cycle(self) -> None:
        """Start a back-flush cleaning cycle."""
        await self._command(CMD_BACKFLUSH_START, {"enabled": True}, "Start back flush")
        _LOGGER.info("Back flush started")

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _thing_path(self, suffix: str) -> str:
        if not self._serial:
            raise NoDeviceFoundError("No machine selected. Call connect() first.")
        return f"{THINGS_PATH}/{self._serial}/{suffix}"

    async def _command(self, name: str, body: dict[str, object], action: str) -> ApiResponse:
        resp = await self._executor.execute("POST", self._thing_path(f"command/{name}"), body)
        if resp.status not in (200, 202):
            raise CommandFailedError(action, resp.status, resp.text)
        return resp

    def _update(self, **changes: object) -> None:
        """Apply an optimistic local update after a successful command."""
        self._snapshot = dataclasses.replace(self._snapshot, **changes)  # type: ignore[arg-type]
        self._notify()

    def _notify(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self.get_status())
        except Exception:
            _LOGGER.exception("Status change callback failed")


class Poller:
    """Handle for the background polling task.

    Returned by :meth:`Client.start_polling`.  Call :meth:`stop` to cancel
    it, or :meth:`wait` to block until it ends.
    """

    def __init__(self, task: asyncio.Task[None]) -> None:
        self._task = task

    @property
    def running(self) -> bool:
        return not self._task.done()

    async def stop(self) -> None:
        """Cancel polling and wait for cleanup."""
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task

    async def wait(self) -> None:
        """Wait until polling ends."""
        await self._task


def truncate_weight(grams: float) -> float:
    """Truncate a dose weight to one decimal (``18.55`` -> ``18.5``)."""
    return int(grams * 10) / 10


def _raise_for_status(resp: ApiResponse, action: str) -> None:
    if resp.status != 200:
        raise CommandFailedError(action, resp.status, resp.text)
