# errors.py
# Failure taxonomy for the environment field pipeline and the pose tracker.


class ChaserError(Exception):
    """Base class for everything raised by the chaser package."""


class DecodeError(ChaserError):
    """Occupancy snapshot is malformed or decodes to an unexpected tree type."""


class DegenerateVolumeError(ChaserError):
    """Bounding volume has zero (or invalid) extent along some axis."""


class TransformUnavailable(ChaserError):
    """No known relation between two frames at the requested time."""


class FieldNotReadyError(ChaserError):
    """Distance field queried before the first snapshot was processed, or after it failed."""
