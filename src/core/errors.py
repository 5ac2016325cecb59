"""Error kinds shared by the core and its adapters."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Typed failure kinds surfaced through results and exceptions."""

    PARSE_NO_MATCH = "parse_no_match"
    STORE_UNAVAILABLE = "store_unavailable"
    DUPLICATE_IGNORED = "duplicate_ignored"
    PORTAL_TIMEOUT = "portal_timeout"
    PORTAL_ELEMENT_NOT_FOUND = "portal_element_not_found"
    PORTAL_ERROR = "portal_error"
    AUTH_FAILURE = "auth_failure"
    INVALID_STATE = "invalid_state"
    NO_RECORDS = "no_records"
    SESSION_CLOSED = "session_closed"


class AttendanceError(Exception):
    """Base class for failures raised by adapters into the core."""

    kind: ErrorKind = ErrorKind.PORTAL_ERROR


class StoreUnavailable(AttendanceError):
    """The backing record store could not be reached."""

    kind = ErrorKind.STORE_UNAVAILABLE


class PortalTimeout(AttendanceError):
    """A login, navigation or element wait exceeded its bound."""

    kind = ErrorKind.PORTAL_TIMEOUT


class PortalError(AttendanceError):
    """Navigation or page interaction failed for a reason other than a timeout."""

    kind = ErrorKind.PORTAL_ERROR


class AuthFailure(AttendanceError):
    """The chat connection rejected the credentials."""

    kind = ErrorKind.AUTH_FAILURE
