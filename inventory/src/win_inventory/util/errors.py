from __future__ import annotations

from enum import Enum, IntEnum


class ExitCode(IntEnum):
    OK = 0
    CONFIG_ERROR = 2
    DISCOVERY_ERROR = 3
    ROLE_CLIENT_ERROR = 4
    RUNTIME_ERROR = 5


class FailureKind(str, Enum):
    UNREACHABLE = "Unreachable"
    ACCESS_DENIED = "AccessDenied"
    NOT_FOUND = "NotFound"
    MALFORMED_DATA = "MalformedData"


class InventoryError(Exception):
    """Base error for inventory pipeline."""


class ConfigError(InventoryError):
    """Raised for configuration or argument issues."""


class DiscoveryError(InventoryError):
    """Raised when the initial server list cannot be enumerated."""


class RoleClientError(InventoryError):
    """Raised by the role client when a management cmdlet fails."""

    kind: FailureKind = FailureKind.UNREACHABLE


class UnreachableError(RoleClientError):
    """Network, RPC or authentication failure reaching a role instance."""

    kind = FailureKind.UNREACHABLE


class AccessDeniedError(RoleClientError):
    """Insufficient rights on the role instance."""

    kind = FailureKind.ACCESS_DENIED


class NotFoundError(RoleClientError):
    """Scope, zone or record vanished between enumeration steps."""

    kind = FailureKind.NOT_FOUND


class MalformedDataError(RoleClientError):
    """Returned data could not be interpreted (bad address range, option value, JSON)."""

    kind = FailureKind.MALFORMED_DATA


class ExportError(InventoryError):
    """Raised when exporting artifacts fails."""


class DiffError(InventoryError):
    """Raised when diffing inventories fails."""


def as_exit_code(exc: BaseException) -> int:
    if isinstance(exc, (ConfigError, ValueError)):
        return int(ExitCode.CONFIG_ERROR)
    if isinstance(exc, DiscoveryError):
        return int(ExitCode.DISCOVERY_ERROR)
    if isinstance(exc, RoleClientError):
        return int(ExitCode.ROLE_CLIENT_ERROR)
    return int(ExitCode.RUNTIME_ERROR)


def failure_kind_for(exc: BaseException) -> FailureKind:
    """
    Map any exception raised by a role client call to a FailureKind.
    Typed client errors carry their own kind; timeouts and OS-level errors
    reaching the remote role count as Unreachable.
    """
    if isinstance(exc, RoleClientError):
        return exc.kind
    if isinstance(exc, PermissionError):
        return FailureKind.ACCESS_DENIED
    if isinstance(exc, LookupError):
        return FailureKind.NOT_FOUND
    if isinstance(exc, (ValueError, TypeError)):
        return FailureKind.MALFORMED_DATA
    # subprocess.TimeoutExpired, TimeoutError, OSError and anything unexpected
    return FailureKind.UNREACHABLE
