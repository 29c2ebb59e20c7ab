"""Stream session: composition root of the capture core.

Wires the pieces for one camera source:

    ProcessSupervisor stdout chunks
        → FrameDemuxer.feed()                       (event loop, in order)
        → FrameHistory.push()  (previous, current)  (atomic two-slot rotate)
        → frames channel + frame callbacks          (every frame)
        → MotionScorer in a one-thread worker       (one pair in flight, newest waits)
        → stale check (session generation)
        → MotionDebouncer.update()
        → motion channel + motion callbacks         (rising edge only)

One session runs at a time: start() on a running session stops it first,
so two decoders never coexist. stop() bumps the generation counter, so any
score still being computed is discarded when it lands.

Scoring runs one pair at a time. Pairs that arrive meanwhile overwrite a
single waiting slot, so a pair superseded by a newer frame is dropped
before it is scored and the worker never falls behind the stream. The pair
in flight is applied when it lands, unless the session changed.

Logging Strategy:
    DEBUG - Frame rotation, stale score drops, callback registration
    INFO  - Session start/stop, motion events
    WARN  - Collaborator callback failures
    ERROR - Terminal decoder failure
"""
from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Final, Optional

from ..config_io import Settings
from ..exceptions import DecoderFailedError, DecoderSpawnError, SessionStartError
from ..models.frame import Frame, FramePair, MotionEvent
from ..models.session import SessionStatus, SupervisorState
from ..utils.rtsp import validate_source_url
from ..utils.strings import mask_rtsp_credentials
from .channels import EventChannel, Subscription
from .demuxer import FrameDemuxer
from .motion import MotionDebouncer, MotionScorer
from .supervisor import ProcessSupervisor
from .. import metrics

logger = logging.getLogger(__name__)

FrameCallback = Callable[[bytes, int, float], None]
"""on_frame(frame_bytes, sequence, timestamp)"""

MotionCallback = Callable[[int, float, bytes], None]
"""on_motion_event(score, timestamp, frame_bytes)"""

FailureCallback = Callable[[Exception], None]

FRAME_CHANNEL_SIZE: Final[int] = 2
"""Live view only needs the freshest frames."""

MOTION_CHANNEL_SIZE: Final[int] = 32
"""Motion events are rare; keep a generous backlog."""

# ============================================================================
# Frame History
# ============================================================================

class FrameHistory:
    """Fixed-capacity (2) ring of the newest frames.

    Both slots live in a single tuple that is replaced in one assignment, so
    a reader never observes a half-rotated pair.
    """

    CAPACITY: Final[int] = 2

    def __init__(self) -> None:
        self._slots: tuple[Frame, ...] = ()

    def __len__(self) -> int:
        return len(self._slots)

    @property
    def current(self) -> Optional[Frame]:
        return self._slots[-1] if self._slots else None

    @property
    def previous(self) -> Optional[Frame]:
        return self._slots[0] if len(self._slots) == self.CAPACITY else None

    def push(self, frame: Frame) -> FramePair:
        """Make frame current, displace current to previous; return the pair."""
        self._slots = (self._slots[-1], frame) if self._slots else (frame,)
        return self.snapshot()

    def snapshot(self) -> Optional[FramePair]:
        slots = self._slots
        if not slots:
            return None
        previous = slots[0] if len(slots) == self.CAPACITY else None
        return FramePair(previous=previous, current=slots[-1])

    def clear(self) -> None:
        self._slots = ()


# ============================================================================
# Stream Session
# ============================================================================

class StreamSession:
    """Owns one camera source and its frame/motion pipeline.

    Attributes:
        frames: Channel of every demuxed Frame
        motion_events: Channel of debounced MotionEvents
        source_url: Active (or last) source
        last_error: Message of the last terminal failure
    """

    def __init__(
        self,
        settings: Settings,
        scorer: Optional[MotionScorer] = None,
        debouncer: Optional[MotionDebouncer] = None,
        supervisor_factory: Optional[Callable[..., ProcessSupervisor]] = None,
        clock: Callable[[], float] = time.time
    ) -> None:
        self.settings = settings
        self.scorer = scorer or MotionScorer(
            width=settings.analysis_width,
            height=settings.analysis_height,
            pixel_threshold=settings.pixel_threshold
        )
        self.debouncer = debouncer or MotionDebouncer(
            motion_threshold=settings.motion_threshold,
            cooldown_s=settings.motion_cooldown_s
        )
        self._clock = clock

        factory = supervisor_factory or ProcessSupervisor
        self._supervisor = factory(
            settings,
            on_output=self._handle_chunk,
            on_failure=self._handle_decoder_failure,
            on_exit=self._handle_decoder_exit
        )

        self.frames: EventChannel[Frame] = EventChannel("frames", FRAME_CHANNEL_SIZE)
        self.motion_events: EventChannel[MotionEvent] = EventChannel("motion", MOTION_CHANNEL_SIZE)
        self._frame_callbacks: list[FrameCallback] = []
        self._motion_callbacks: list[MotionCallback] = []
        self._failure_callbacks: list[FailureCallback] = []

        self._demuxer = FrameDemuxer(settings.max_pending_frame_bytes, clock=clock)
        self._history = FrameHistory()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="camwatch-score")
        self._score_task: Optional[asyncio.Task] = None
        self._next_pair: Optional[tuple[FramePair, int]] = None
        self._scoring = False
        self._lifecycle_lock = asyncio.Lock()

        self._running = False
        self._generation = 0
        self.source_url: Optional[str] = None
        self.last_error: Optional[str] = None
        self.last_motion_at: Optional[float] = None
        self.frames_received = 0

    # ========================================================================
    # Properties / Accessors
    # ========================================================================

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending_scores(self) -> int:
        """Pairs being scored or waiting to be (at most 2)."""
        return int(self._scoring) + int(self._next_pair is not None)

    @property
    def supervisor(self) -> ProcessSupervisor:
        return self._supervisor

    def current_frame(self) -> Optional[Frame]:
        """Most recently demuxed frame, or None."""
        return self._history.current

    def previous_frame(self) -> Optional[Frame]:
        return self._history.previous

    def status(self) -> SessionStatus:
        current = self._history.current
        return SessionStatus(
            running=self._running,
            source_url=mask_rtsp_credentials(self.source_url),
            supervisor_state=self._supervisor.state,
            reconnect_attempts=self._supervisor.attempts,
            frames_received=self.frames_received,
            last_frame_at=current.timestamp if current is not None else None,
            last_motion_at=self.last_motion_at,
            motion_active=self.debouncer.active,
            last_error=self.last_error
        )

    # ========================================================================
    # Collaborator Registration
    # ========================================================================

    def register_frame_callback(self, callback: FrameCallback) -> None:
        """Observe every frame as (frame_bytes, sequence, timestamp)."""
        self._frame_callbacks.append(callback)
        logger.debug(f"Frame callback registered (total: {len(self._frame_callbacks)})")

    def register_motion_callback(self, callback: MotionCallback) -> None:
        """Observe motion events as (score, timestamp, frame_bytes)."""
        self._motion_callbacks.append(callback)
        logger.debug(f"Motion callback registered (total: {len(self._motion_callbacks)})")

    def register_failure_callback(self, callback: FailureCallback) -> None:
        """Observe terminal decoder failures."""
        self._failure_callbacks.append(callback)

    def subscribe_frames(self, maxsize: Optional[int] = None) -> Subscription[Frame]:
        """Live frames; a slow viewer loses the oldest ones."""
        return self.frames.subscribe(maxsize)

    def subscribe_motion(self, maxsize: Optional[int] = None) -> Subscription[MotionEvent]:
        return self.motion_events.subscribe(maxsize)

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def start(self, source_url: str) -> None:
        """Start capturing from a source, replacing any running session.

        Raises:
            SessionStartError: Invalid URL or decoder failed to spawn
        """
        is_valid, error_msg = validate_source_url(source_url)
        if not is_valid:
            raise SessionStartError(error_msg or "Invalid source URL")

        async with self._lifecycle_lock:
            if self._running or self._supervisor.state is not SupervisorState.STOPPED:
                logger.info("Session already active, stopping it before restart")
                await self._stop_locked()

            self._reset_pipeline()
            self._generation += 1
            self.source_url = source_url
            self.last_error = None
            self._running = True
            metrics.session_running.set(1)

            try:
                await self._supervisor.start(source_url)
            except DecoderSpawnError as e:
                self._running = False
                self._generation += 1
                self.last_error = str(e)
                metrics.session_running.set(0)
                raise SessionStartError(str(e)) from e

        logger.info(f"Session started: {mask_rtsp_credentials(source_url)}")

    async def stop(self) -> None:
        """Stop capturing and discard all session state. Idempotent."""
        async with self._lifecycle_lock:
            await self._stop_locked()

    async def close(self) -> None:
        """Stop and release the scoring worker (application shutdown)."""
        await self.stop()
        self._executor.shutdown(wait=False, cancel_futures=True)

    async def wait_idle(self) -> None:
        """Wait for outstanding score computations to settle."""
        while self._score_task is not None and not self._score_task.done():
            await asyncio.gather(self._score_task, return_exceptions=True)

    async def _stop_locked(self) -> None:
        was_running = self._running
        self._running = False
        self._generation += 1

        await self._supervisor.stop()

        self._next_pair = None
        if self._score_task is not None:
            self._score_task.cancel()
            self._score_task = None
        self._reset_pipeline()
        self.frames.close()
        self.motion_events.close()
        metrics.session_running.set(0)

        if was_running:
            logger.info("Session stopped")

    def _reset_pipeline(self) -> None:
        self._demuxer.reset(sequence=True)
        self._history.clear()
        self.debouncer.reset()
        self.frames_received = 0
        self.last_motion_at = None

    def _end_session(self) -> None:
        """Tear down after the decoder ended on its own."""
        self._running = False
        self._generation += 1
        self._reset_pipeline()
        self.frames.close()
        self.motion_events.close()
        metrics.session_running.set(0)

    # ========================================================================
    # Supervisor Callbacks
    # ========================================================================

    def _handle_chunk(self, chunk: bytes) -> None:
        """Demux one stdout chunk. Runs on the supervisor's reader task."""
        if not self._running:
            return

        generation = self._generation
        for frame in self._demuxer.feed(chunk):
            self._handle_frame(frame, generation)

    def _handle_decoder_failure(self, error: DecoderFailedError) -> None:
        logger.error(f"Session failed: {error}")
        self.last_error = str(error)
        self._end_session()
        for callback in self._failure_callbacks:
            try:
                callback(error)
            except Exception as e:
                logger.warning(f"Failure callback error: {e}", exc_info=True)

    def _handle_decoder_exit(self, returncode: int) -> None:
        logger.info(f"Decoder finished (code {returncode}), session ended")
        self._end_session()

    # ========================================================================
    # Per-Frame Pipeline
    # ========================================================================

    def _handle_frame(self, frame: Frame, generation: int) -> None:
        pair = self._history.push(frame)
        self.frames_received += 1

        self.frames.publish(frame)
        for callback in self._frame_callbacks:
            try:
                callback(frame.data, frame.sequence, frame.timestamp)
            except Exception as e:
                logger.warning(f"Frame callback error: {e}", exc_info=True)

        if not pair.comparable:
            return

        if self._next_pair is not None:
            metrics.scores_skipped_total.inc()
            logger.debug(f"Pair #{self._next_pair[0].current.sequence} superseded before scoring")
        self._next_pair = (pair, generation)

        if self._score_task is None or self._score_task.done():
            self._score_task = asyncio.get_running_loop().create_task(self._score_pending())

    async def _score_pending(self) -> None:
        """Score the waiting pair until none is left. At most one runs at a time."""
        loop = asyncio.get_running_loop()
        while self._next_pair is not None:
            pair, generation = self._next_pair
            self._next_pair = None

            self._scoring = True
            try:
                score = await loop.run_in_executor(
                    self._executor, self.scorer.score, pair.previous, pair.current
                )
            except RuntimeError as e:
                # Executor shut down mid-flight
                logger.debug(f"Scoring abandoned: {e}")
                return
            finally:
                self._scoring = False

            self._apply_score(pair.current, score, generation)

    def _apply_score(self, frame: Frame, score: int, generation: int) -> Optional[MotionEvent]:
        """Feed a score to the debouncer unless the session changed meanwhile."""
        if generation != self._generation or not self._running:
            metrics.stale_scores_total.inc()
            logger.debug(f"Discarding score for #{frame.sequence}: session changed")
            return None

        now = self._clock()
        if not self.debouncer.update(score, now):
            return None

        event = MotionEvent(score=score, timestamp=now, frame=frame)
        self.last_motion_at = now
        metrics.motion_events_total.inc()
        logger.info(f"Motion detected! Level: {score} (frame #{frame.sequence})")

        self.motion_events.publish(event)
        for callback in self._motion_callbacks:
            try:
                callback(event.score, event.timestamp, frame.data)
            except Exception as e:
                logger.warning(f"Motion callback error: {e}", exc_info=True)

        return event
