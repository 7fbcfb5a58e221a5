# core/exceptions.py


class RepostGuardError(Exception):
    """Base class for all repost guard errors"""


class StoreError(RepostGuardError):
    """Store unreachable, statement failed, or a partition lock timed out"""


class ReportError(RepostGuardError):
    """A statistics report could not be computed"""


class UnsupportedEventError(RepostGuardError):
    """Inbound payload is missing required fields or cannot be decoded"""
