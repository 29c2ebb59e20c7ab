"""Decoder process supervision.

Owns the lifecycle of the external FFmpeg decoder:

    STOPPED → STARTING → RUNNING ──exit≠0, attempts < max──→ RECONNECTING
                 ↑                                              │ fixed delay
                 └──────────────────────────────────────────────┘
    RUNNING ──exit≠0, attempts ≥ max──→ FAILED
    RUNNING ──exit 0──→ STOPPED (deliberate end of input, no reconnect)
    any ──stop()──→ STOPPED

The attempt counter starts at 1 on start(), grows by one per reconnect, and
drops back to 1 as soon as a respawned decoder delivers output.

Stdout is read by a single task and handed to on_output() in arrival order.
Stderr is logged by a monitor task and never drives state.

Logging Strategy:
    DEBUG - Chunk reads, handle transitions, stderr chatter
    INFO  - Spawns, connection established, deliberate stops
    WARN  - Unexpected exits and reconnect scheduling
    ERROR - Spawn failures, reconnect budget exhausted
"""
from __future__ import annotations

import asyncio
import logging
import subprocess
from typing import Any, Awaitable, Callable, Final, Optional

from ..config_io import Settings
from ..exceptions import DecoderFailedError, DecoderSpawnError
from ..models.session import HandleState, SupervisorState
from ..utils.rtsp import build_decoder_command, classify_decoder_line
from ..utils.strings import mask_rtsp_credentials
from .. import metrics

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

READ_CHUNK_SIZE: Final[int] = 64 * 1024
"""Bytes requested per stdout read."""

STOP_TIMEOUT: Final[float] = 5.0
"""Graceful shutdown timeout before SIGKILL."""

Spawner = Callable[..., Awaitable[Any]]
"""asyncio.create_subprocess_exec compatible coroutine function."""

# ============================================================================
# Decoder Handle
# ============================================================================

class DecoderHandle:
    """Owned handle on one decoder process with an explicit lifecycle.

    ABSENT handles stand in for "nothing spawned" so callers check state
    instead of testing for None.
    """

    def __init__(self, process: Any = None) -> None:
        self.process = process
        self.returncode: int | None = None
        self.state = HandleState.RUNNING if process is not None else HandleState.ABSENT

    @classmethod
    def absent(cls) -> DecoderHandle:
        return cls()

    @property
    def pid(self) -> int | None:
        return getattr(self.process, "pid", None)

    @property
    def alive(self) -> bool:
        return self.state is HandleState.RUNNING

    def mark_exited(self, returncode: int | None) -> None:
        """Record a process exit observed by the reader."""
        if self.state is HandleState.RUNNING:
            self.state = HandleState.EXITED
            self.returncode = returncode
            logger.debug(f"Decoder PID={self.pid} exited (code {returncode})")

    async def terminate(self, timeout: float = STOP_TIMEOUT) -> None:
        """Terminate the process: SIGTERM, wait, then SIGKILL."""
        if self.state is not HandleState.RUNNING:
            return

        process = self.process
        self.state = HandleState.TERMINATED
        try:
            process.terminate()
        except ProcessLookupError:
            logger.debug(f"Decoder PID={self.pid} already gone")
        try:
            self.returncode = await asyncio.wait_for(process.wait(), timeout=timeout)
            logger.debug(f"Decoder terminated gracefully: PID={self.pid}")
        except asyncio.TimeoutError:
            logger.warning(f"Timeout, killing decoder: PID={self.pid}")
            try:
                process.kill()
            except ProcessLookupError:
                pass
            self.returncode = await process.wait()


# ============================================================================
# Process Supervisor
# ============================================================================

class ProcessSupervisor:
    """Spawns the decoder, streams its stdout, and reconnects on failure.

    Attributes:
        state: Current SupervisorState
        attempts: Spawn attempts in the current failure streak (0 when stopped)
    """

    def __init__(
        self,
        settings: Settings,
        on_output: Callable[[bytes], None],
        on_failure: Optional[Callable[[DecoderFailedError], None]] = None,
        on_exit: Optional[Callable[[int], None]] = None,
        spawner: Optional[Spawner] = None
    ) -> None:
        """
        Args:
            settings: Decoder command and retry policy
            on_output: Called with each stdout chunk, in order
            on_failure: Called once when supervision gives up
            on_exit: Called when the decoder exits cleanly (code 0)
            spawner: Process factory (default asyncio.create_subprocess_exec)
        """
        self.settings = settings
        self.max_attempts = settings.max_reconnect_attempts
        self.reconnect_delay_s = settings.reconnect_delay_s

        self._on_output = on_output
        self._on_failure = on_failure
        self._on_exit = on_exit
        self._spawner: Spawner = spawner or asyncio.create_subprocess_exec

        self.state = SupervisorState.STOPPED
        self.attempts = 0
        self.source_url: str | None = None
        self._handle = DecoderHandle.absent()
        self._want_running = False
        self._reader_task: asyncio.Task | None = None
        self._stderr_task: asyncio.Task | None = None

    # ========================================================================
    # Properties
    # ========================================================================

    @property
    def handle(self) -> DecoderHandle:
        return self._handle

    @property
    def pid(self) -> int | None:
        return self._handle.pid

    @property
    def is_running(self) -> bool:
        """True while supervision is active (running or reconnecting)."""
        return self._want_running

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def start(self, source_url: str) -> None:
        """Spawn the decoder for a source.

        Any previous decoder is stopped first.

        Raises:
            DecoderSpawnError: Process could not be spawned
        """
        if self.state is not SupervisorState.STOPPED or self._handle.alive:
            await self.stop()

        self.source_url = source_url
        self._want_running = True
        self.attempts = 1
        logger.info(f"Starting decoder for {mask_rtsp_credentials(source_url)}")

        try:
            await self._spawn()
        except DecoderSpawnError:
            self._want_running = False
            raise

    async def stop(self) -> None:
        """Stop supervision and terminate the decoder. Idempotent."""
        was = self.state
        self._want_running = False

        current = asyncio.current_task()
        tasks = [t for t in (self._reader_task, self._stderr_task) if t is not None and t is not current]
        self._reader_task = None
        self._stderr_task = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        handle, self._handle = self._handle, DecoderHandle.absent()
        await handle.terminate()

        self.attempts = 0
        self._set_state(SupervisorState.STOPPED)
        if was is not SupervisorState.STOPPED:
            logger.info("Decoder stopped")

    # ========================================================================
    # Internals
    # ========================================================================

    def _set_state(self, state: SupervisorState) -> None:
        if state is not self.state:
            logger.debug(f"Supervisor: {self.state.value} → {state.value}")
        self.state = state
        metrics.update_supervisor_state(state)

    async def _spawn(self) -> None:
        """Spawn one decoder process and start its reader tasks."""
        self._set_state(SupervisorState.STARTING)
        cmd = build_decoder_command(self.source_url, self.settings)

        try:
            process = await self._spawner(
                *cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE
            )
        except (OSError, ValueError) as e:
            metrics.decoder_spawns_total.labels(status="failure").inc()
            metrics.decoder_failures_total.inc()
            self._set_state(SupervisorState.FAILED)
            logger.error(f"Failed to spawn decoder ({cmd[0]}): {e}")
            raise DecoderSpawnError(f"Failed to spawn decoder: {e}") from e

        metrics.decoder_spawns_total.labels(status="success").inc()
        handle = DecoderHandle(process)
        self._handle = handle
        self._set_state(SupervisorState.RUNNING)
        logger.info(
            f"Decoder started: PID={handle.pid} "
            f"(attempt {self.attempts}/{self.max_attempts})"
        )

        self._stderr_task = asyncio.create_task(self._monitor_stderr(handle))
        self._reader_task = asyncio.create_task(self._read_stdout(handle))

    async def _read_stdout(self, handle: DecoderHandle) -> None:
        """Pump stdout chunks to on_output, then handle the exit."""
        stdout = handle.process.stdout
        try:
            while True:
                chunk = await stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break

                if self.attempts > 1:
                    logger.info("Decoder connection established, resetting attempt counter")
                    self.attempts = 1

                self._on_output(chunk)

            returncode = await handle.process.wait()
        except asyncio.CancelledError:
            logger.debug(f"Decoder reader cancelled: PID={handle.pid}")
            raise

        handle.mark_exited(returncode)
        await self._handle_exit(handle, returncode)

    async def _handle_exit(self, handle: DecoderHandle, returncode: int) -> None:
        """Decide between stop, reconnect and failure after an exit."""
        if handle is not self._handle or not self._want_running:
            return

        if returncode == 0:
            logger.info("Decoder exited cleanly (end of input), not reconnecting")
            self._want_running = False
            self.attempts = 0
            self._set_state(SupervisorState.STOPPED)
            if self._on_exit is not None:
                self._on_exit(returncode)
            return

        if self.attempts >= self.max_attempts:
            logger.error(
                f"Decoder exited with code {returncode}; maximum attempts "
                f"({self.max_attempts}) reached, giving up. Check the source URL."
            )
            self._want_running = False
            self._set_state(SupervisorState.FAILED)
            metrics.decoder_failures_total.inc()
            self._notify_failure(DecoderFailedError(
                f"Decoder failed after {self.attempts} attempt(s)",
                attempts=self.attempts,
                returncode=returncode
            ))
            return

        logger.warning(
            f"Decoder exited with code {returncode}, reconnecting in "
            f"{self.reconnect_delay_s}s ({self.attempts}/{self.max_attempts})"
        )
        self._set_state(SupervisorState.RECONNECTING)
        await asyncio.sleep(self.reconnect_delay_s)

        if not self._want_running or handle is not self._handle:
            return

        self.attempts += 1
        metrics.decoder_restarts_total.inc()
        try:
            await self._spawn()
        except DecoderSpawnError as e:
            self._want_running = False
            self._notify_failure(DecoderFailedError(str(e), attempts=self.attempts))

    def _notify_failure(self, error: DecoderFailedError) -> None:
        if self._on_failure is not None:
            self._on_failure(error)

    async def _monitor_stderr(self, handle: DecoderHandle) -> None:
        """Log decoder stderr by loose severity classification."""
        stderr = getattr(handle.process, "stderr", None)
        if stderr is None:
            logger.debug(f"Decoder stderr unavailable: PID={handle.pid}")
            return

        try:
            while True:
                line = await stderr.readline()
                if not line:
                    break

                message = line.decode(errors="replace").strip()
                if not message:
                    continue

                logger.log(classify_decoder_line(message), f"FFmpeg: {message}")

        except asyncio.CancelledError:
            logger.debug(f"Decoder stderr monitor cancelled: PID={handle.pid}")
        except Exception as e:
            logger.error(f"Stderr monitor error: {e}")
