class BlowoutError(Exception):
    """Base class for every error raised by blowout."""


class SignalSourceError(BlowoutError):
    """The audio input could not be acquired or stopped delivering frames."""

    reason = "source_error"


class PermissionDenied(SignalSourceError):
    reason = "permission_denied"


class DeviceUnavailable(SignalSourceError):
    reason = "device_unavailable"


class NotSupported(SignalSourceError):
    reason = "not_supported"


class CalibrationInterrupted(BlowoutError):
    """The source failed while the ambient baseline was being sampled."""

    reason = "calibration_interrupted"


class InvalidTransition(BlowoutError):
    pass


class ConfigError(BlowoutError):
    pass
