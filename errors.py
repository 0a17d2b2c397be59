class TrafficError(Exception):
    """Base error for the page view collector"""


class ValidationError(TrafficError):
    """A tracked event is missing a required field or carries a bad value"""


class StorageError(TrafficError):
    """The database rejected or failed a write"""
