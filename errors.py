class TrackerError(Exception):
    """Base error for the project tracker."""


class ConfigError(TrackerError):
    pass


class NotFoundError(TrackerError):
    pass


class ValidationError(TrackerError):
    pass
