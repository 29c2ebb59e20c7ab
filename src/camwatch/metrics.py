"""Prometheus metrics for observability.

Provides metrics for:
- Frame demuxing (frames, dropped bytes, buffer resyncs)
- Motion analysis (score distribution, scoring latency, events, stale results)
- Decoder supervision (spawns, restarts, terminal failures, state)
- Session and live-view channels

Logging Strategy:
    INFO  - Module initialization
    ERROR - Metric generation failures
"""
from __future__ import annotations

import logging

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

from .models.session import SupervisorState

logger = logging.getLogger(__name__)

# ============================================================================
# Application Info
# ============================================================================

app_info = Info("camwatch_app", "Application information")
app_info.info({
    "version": "1.0.0",
    "name": "CamWatch",
    "description": "Camera motion alerts from an FFmpeg JPEG pipe"
})

# ============================================================================
# Demuxer Metrics
# ============================================================================

frames_demuxed_total = Counter("camwatch_frames_demuxed_total", "Complete frames cut from the byte stream")

demux_discarded_bytes_total = Counter(
    "camwatch_demux_discarded_bytes_total",
    "Bytes discarded by the demuxer",
    ["reason"]  # no_start_marker, overflow
)

demux_resyncs_total = Counter(
    "camwatch_demux_resyncs_total",
    "Partial frames abandoned after exceeding the pending-bytes bound"
)

frame_size_bytes = Histogram(
    "camwatch_frame_size_bytes",
    "Encoded frame size",
    buckets=(1024, 5120, 10240, 25600, 51200, 102400, 204800, 512000, 1048576)
)

# ============================================================================
# Motion Metrics
# ============================================================================

motion_score = Histogram(
    "camwatch_motion_score",
    "Motion score per compared frame pair",
    buckets=(0, 100, 1000, 5000, 10000, 50000, 100000, 500000, 1000000, 5000000)
)

motion_scoring_duration_seconds = Histogram(
    "camwatch_motion_scoring_duration_seconds",
    "Time to decode and compare one frame pair",
    buckets=(0.001, 0.002, 0.005, 0.010, 0.020, 0.050, 0.100, 0.250)
)

motion_decode_failures_total = Counter(
    "camwatch_motion_decode_failures_total",
    "Frame pairs scored as zero because a frame failed to decode"
)

motion_events_total = Counter("camwatch_motion_events_total", "Debounced motion events")

stale_scores_total = Counter(
    "camwatch_stale_scores_total",
    "Score results discarded because the session stopped or restarted"
)

scores_skipped_total = Counter(
    "camwatch_scores_skipped_total",
    "Frame pairs replaced by a newer pair before scoring started"
)

# ============================================================================
# Decoder Supervision Metrics
# ============================================================================

decoder_spawns_total = Counter(
    "camwatch_decoder_spawns_total",
    "Decoder spawn attempts",
    ["status"]  # success, failure
)

decoder_restarts_total = Counter(
    "camwatch_decoder_restarts_total",
    "Decoder restarts after an unexpected exit"
)

decoder_failures_total = Counter(
    "camwatch_decoder_failures_total",
    "Terminal decoder failures (reconnect budget exhausted or spawn failed)"
)

supervisor_state = Gauge(
    "camwatch_supervisor_state",
    "Decoder supervisor state (1 for the current state)",
    ["state"]
)

# ============================================================================
# Session Metrics
# ============================================================================

session_running = Gauge("camwatch_session_running", "1 while a session is running")

channel_dropped_total = Counter(
    "camwatch_channel_dropped_total",
    "Items dropped for slow subscribers",
    ["channel"]
)

channel_subscribers = Gauge(
    "camwatch_channel_subscribers",
    "Active channel subscribers",
    ["channel"]
)

# ============================================================================
# Metrics Export
# ============================================================================

def get_metrics() -> tuple[bytes, int, dict[str, str]]:
    """Generate Prometheus metrics in text format.

    Returns:
        (body, status_code, headers) for FastAPI Response
    """
    try:
        metrics = generate_latest(REGISTRY)
        return (metrics, 200, {"Content-Type": CONTENT_TYPE_LATEST})
    except Exception as e:
        logger.error(f"Metrics generation failed: {e}", exc_info=True)
        return (b"# Error\n", 500, {"Content-Type": "text/plain"})


# ============================================================================
# Helper Functions
# ============================================================================

def update_supervisor_state(state: SupervisorState) -> None:
    """Set the state gauge so exactly one label reads 1."""
    for candidate in SupervisorState:
        supervisor_state.labels(state=candidate.value).set(1 if candidate is state else 0)


logger.info("Metrics module initialized")
