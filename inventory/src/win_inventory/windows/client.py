from __future__ import annotations

import json
import re
import subprocess
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from ..logging import get_logger
from ..util.errors import (
    AccessDeniedError,
    MalformedDataError,
    NotFoundError,
    RoleClientError,
    UnreachableError,
)

LOG = get_logger(__name__)

RawRecord = Dict[str, Any]

DEFAULT_POWERSHELL = "powershell"
DEFAULT_TIMEOUT = 120

_ACCESS_DENIED_MARKERS = (
    "access is denied",
    "accessdenied",
    "unauthorizedaccess",
    "permissiondenied",
    "win32 5",
)
_NOT_FOUND_MARKERS = (
    "objectnotfound",
    "does not exist",
    "not found",
    "cannot find",
    "win32 20022",
    "win32 9601",
)

# Select-Object projections that turn IPAddress/TimeSpan/CimInstance values
# into plain strings before ConvertTo-Json sees them.
_SCOPE_PROJECTION = (
    "@{n='ScopeId';e={[string]$_.ScopeId}},Name,@{n='StartRange';e={[string]$_.StartRange}},"
    "@{n='EndRange';e={[string]$_.EndRange}},@{n='SubnetMask';e={[string]$_.SubnetMask}},"
    "@{n='LeaseDuration';e={[string]$_.LeaseDuration}},@{n='State';e={[string]$_.State}},"
    "@{n='Type';e={[string]$_.Type}},Description"
)
_STATISTICS_PROJECTION = (
    "@{n='ScopeId';e={[string]$_.ScopeId}},InUse,Free,PercentageInUse,Reserved,Pending"
)
_LEASE_PROJECTION = (
    "@{n='IPAddress';e={[string]$_.IPAddress}},ClientId,HostName,"
    "@{n='AddressState';e={[string]$_.AddressState}},LeaseExpiryTime,"
    "@{n='ClientType';e={[string]$_.ClientType}},Description"
)
_RESERVATION_PROJECTION = (
    "@{n='IPAddress';e={[string]$_.IPAddress}},ClientId,Name,"
    "@{n='Type';e={[string]$_.Type}},Description"
)
_EXCLUSION_PROJECTION = (
    "@{n='StartRange';e={[string]$_.StartRange}},@{n='EndRange';e={[string]$_.EndRange}}"
)
_OPTION_PROJECTION = (
    "OptionId,Name,Type,@{n='Value';e={@($_.Value | ForEach-Object { [string]$_ })}},"
    "VendorClass,UserClass,PolicyName"
)
_DNS_SETTING_PROJECTION = (
    "@{n='DynamicUpdates';e={[string]$_.DynamicUpdates}},DeleteDnsRROnLeaseExpiry,"
    "UpdateDnsRRForOlderClients,DisableDnsPtrRRUpdate,NameProtection"
)
_ZONE_PROJECTION = (
    "ZoneName,@{n='ZoneType';e={[string]$_.ZoneType}},IsDsIntegrated,IsReverseLookupZone,"
    "@{n='DynamicUpdate';e={[string]$_.DynamicUpdate}},IsAutoCreated,IsSigned"
)
_RECORD_PROJECTION = (
    "HostName,RecordType,Timestamp,@{n='TimeToLive';e={[string]$_.TimeToLive}},"
    "@{n='RecordData';e={($_.RecordData.CimInstanceProperties | Where-Object { $_.Value -ne $null } "
    "| ForEach-Object { [string]$_.Value }) -join ' '}}"
)


@runtime_checkable
class RoleClient(Protocol):
    """
    Contract for the Windows role query surface.

    Every method returns a list of flat-ish dicts as produced by the management
    cmdlets and raises a RoleClientError subclass on failure. Calls are
    independent: two calls for the same scope may fail differently.
    """

    def list_servers(self, role: str) -> List[RawRecord]:
        ...

    def list_scopes(self, server: str) -> List[RawRecord]:
        ...

    def list_scope_statistics(self, server: str) -> List[RawRecord]:
        ...

    def list_server_options(self, server: str) -> List[RawRecord]:
        ...

    def get_dns_setting(self, server: str, scope_id: str) -> List[RawRecord]:
        ...

    def list_leases(self, server: str, scope_id: str) -> List[RawRecord]:
        ...

    def list_reservations(self, server: str, scope_id: str) -> List[RawRecord]:
        ...

    def list_exclusions(self, server: str, scope_id: str) -> List[RawRecord]:
        ...

    def list_options(self, server: str, scope_id: str) -> List[RawRecord]:
        ...

    def list_zones(self, server: str) -> List[RawRecord]:
        ...

    def list_records(self, server: str, zone: str) -> List[RawRecord]:
        ...


def ps_quote(value: str) -> str:
    """Quote a value as a PowerShell single-quoted literal."""
    return "'" + str(value).replace("'", "''") + "'"


def classify_ps_error(text: str, context: str) -> RoleClientError:
    """
    Map PowerShell error output to a typed client error.
    Anything not recognised as a permission or missing-object problem is
    treated as the role instance being unreachable.
    """
    lowered = re.sub(r"\s+", " ", (text or "").lower())
    message = f"{context}: {_first_error_line(text)}"
    if any(marker in lowered for marker in _ACCESS_DENIED_MARKERS):
        return AccessDeniedError(message)
    if any(marker in lowered for marker in _NOT_FOUND_MARKERS):
        return NotFoundError(message)
    return UnreachableError(message)


def _first_error_line(text: str) -> str:
    for line in (text or "").splitlines():
        line = line.strip()
        if line:
            return line[:300]
    return "no error output"


def parse_ps_json(stdout: str, context: str) -> List[RawRecord]:
    """
    Parse ConvertTo-Json output. A single object becomes a one-item list and
    empty output an empty list.
    """
    text = (stdout or "").strip()
    if not text:
        return []
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedDataError(f"{context}: invalid JSON from PowerShell ({e})") from e
    if data is None:
        return []
    if isinstance(data, dict):
        return [data]
    if isinstance(data, list) and all(isinstance(it, dict) for it in data):
        return data
    raise MalformedDataError(f"{context}: unexpected JSON payload type {type(data).__name__}")


class PowerShellRoleClient:
    """
    RoleClient backed by the DhcpServer, DnsServer and ActiveDirectory
    PowerShell modules, one powershell.exe process per call.
    """

    def __init__(self, executable: str = DEFAULT_POWERSHELL, timeout: int = DEFAULT_TIMEOUT) -> None:
        self.executable = executable
        self.timeout = timeout

    def _invoke(self, command: str, context: str) -> List[RawRecord]:
        script = (
            "$ErrorActionPreference = 'Stop'; "
            "$ProgressPreference = 'SilentlyContinue'; "
            f"ConvertTo-Json -InputObject @({command}) -Depth 4 -Compress"
        )
        LOG.debug("Invoking PowerShell", extra={"step": "client", "phase": "invoke", "command": context})
        try:
            proc = subprocess.run(
                [self.executable, "-NoProfile", "-NonInteractive", "-Command", script],
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise UnreachableError(f"{context}: no response within {self.timeout}s") from e
        except OSError as e:
            raise UnreachableError(f"{context}: cannot start {self.executable}: {e}") from e
        if proc.returncode != 0:
            raise classify_ps_error(proc.stderr or proc.stdout, context)
        return parse_ps_json(proc.stdout, context)

    def list_servers(self, role: str) -> List[RawRecord]:
        role_u = (role or "").upper()
        if role_u == "DHCP":
            command = "Get-DhcpServerInDC | Select-Object DnsName,@{n='IPAddress';e={[string]$_.IPAddress}}"
        elif role_u == "DNS":
            command = (
                "Get-ADDomainController -Filter * | "
                "Select-Object @{n='DnsName';e={$_.HostName}},@{n='IPAddress';e={$_.IPv4Address}},Site"
            )
        else:
            raise ValueError(f"Unsupported role: {role}")
        return self._invoke(command, f"list {role_u} servers")

    def list_scopes(self, server: str) -> List[RawRecord]:
        return self._invoke(
            f"Get-DhcpServerv4Scope -ComputerName {ps_quote(server)} | Select-Object {_SCOPE_PROJECTION}",
            f"list scopes on {server}",
        )

    def list_scope_statistics(self, server: str) -> List[RawRecord]:
        return self._invoke(
            f"Get-DhcpServerv4ScopeStatistics -ComputerName {ps_quote(server)} "
            f"| Select-Object {_STATISTICS_PROJECTION}",
            f"scope statistics on {server}",
        )

    def list_server_options(self, server: str) -> List[RawRecord]:
        return self._invoke(
            f"Get-DhcpServerv4OptionValue -ComputerName {ps_quote(server)} -All "
            f"| Select-Object {_OPTION_PROJECTION}",
            f"server options on {server}",
        )

    def get_dns_setting(self, server: str, scope_id: str) -> List[RawRecord]:
        return self._invoke(
            f"Get-DhcpServerv4DnsSetting -ComputerName {ps_quote(server)} -ScopeId {ps_quote(scope_id)} "
            f"| Select-Object {_DNS_SETTING_PROJECTION}",
            f"DNS settings for {server}/{scope_id}",
        )

    def list_leases(self, server: str, scope_id: str) -> List[RawRecord]:
        return self._invoke(
            f"Get-DhcpServerv4Lease -ComputerName {ps_quote(server)} -ScopeId {ps_quote(scope_id)} "
            f"| Select-Object {_LEASE_PROJECTION}",
            f"leases for {server}/{scope_id}",
        )

    def list_reservations(self, server: str, scope_id: str) -> List[RawRecord]:
        return self._invoke(
            f"Get-DhcpServerv4Reservation -ComputerName {ps_quote(server)} -ScopeId {ps_quote(scope_id)} "
            f"| Select-Object {_RESERVATION_PROJECTION}",
            f"reservations for {server}/{scope_id}",
        )

    def list_exclusions(self, server: str, scope_id: str) -> List[RawRecord]:
        return self._invoke(
            f"Get-DhcpServerv4ExclusionRange -ComputerName {ps_quote(server)} -ScopeId {ps_quote(scope_id)} "
            f"| Select-Object {_EXCLUSION_PROJECTION}",
            f"exclusions for {server}/{scope_id}",
        )

    def list_options(self, server: str, scope_id: str) -> List[RawRecord]:
        return self._invoke(
            f"Get-DhcpServerv4OptionValue -ComputerName {ps_quote(server)} -ScopeId {ps_quote(scope_id)} -All "
            f"| Select-Object {_OPTION_PROJECTION}",
            f"scope options for {server}/{scope_id}",
        )

    def list_zones(self, server: str) -> List[RawRecord]:
        return self._invoke(
            f"Get-DnsServerZone -ComputerName {ps_quote(server)} | Select-Object {_ZONE_PROJECTION}",
            f"list zones on {server}",
        )

    def list_records(self, server: str, zone: str) -> List[RawRecord]:
        return self._invoke(
            f"Get-DnsServerResourceRecord -ComputerName {ps_quote(server)} -ZoneName {ps_quote(zone)} "
            f"| Select-Object {_RECORD_PROJECTION}",
            f"records in {server}/{zone}",
        )


def make_role_client(executable: Optional[str] = None, timeout: Optional[int] = None) -> RoleClient:
    return PowerShellRoleClient(executable or DEFAULT_POWERSHELL, int(timeout or DEFAULT_TIMEOUT))
