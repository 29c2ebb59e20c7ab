"""CamWatch: camera motion alerts from an FFmpeg JPEG pipe.

The capture core lives in camwatch.services (demuxer, motion, supervisor,
session); camwatch.main wraps it in a FastAPI application.
"""

__version__ = "1.0.0"
