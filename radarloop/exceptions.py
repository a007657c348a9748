from __future__ import annotations


class RadarLoopError(Exception):
    """Base exception for radar loop errors"""


class ConfigError(RadarLoopError):
    """Raised when the configuration cannot drive a pipeline run"""


class DiscoveryError(RadarLoopError):
    """Raised when a capabilities document yields no usable time dimension"""


class FrameDecodeError(RadarLoopError):
    """Raised when radar bytes cannot be decoded as an image"""


class EncoderUnavailableError(RadarLoopError):
    """Raised when the ffmpeg executable cannot be located or executed"""
