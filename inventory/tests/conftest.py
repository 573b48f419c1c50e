from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

CallKey = Tuple[str, ...]


class FakeRoleClient:
    """
    In-memory role client. Answers are keyed by (method, *args); a key listed
    in errors raises that exception instead. Unknown keys answer an empty list.
    """

    def __init__(
        self,
        data: Optional[Dict[CallKey, List[Dict[str, Any]]]] = None,
        errors: Optional[Dict[CallKey, Exception]] = None,
    ) -> None:
        self.data = dict(data or {})
        self.errors = dict(errors or {})
        self.calls: List[CallKey] = []
        self._lock = threading.Lock()

    def _answer(self, *key: str) -> List[Dict[str, Any]]:
        with self._lock:
            self.calls.append(key)
        if key in self.errors:
            raise self.errors[key]
        return [dict(r) for r in self.data.get(key, [])]

    def list_servers(self, role: str) -> List[Dict[str, Any]]:
        return self._answer("list_servers", role)

    def list_scopes(self, server: str) -> List[Dict[str, Any]]:
        return self._answer("list_scopes", server)

    def list_scope_statistics(self, server: str) -> List[Dict[str, Any]]:
        return self._answer("list_scope_statistics", server)

    def list_server_options(self, server: str) -> List[Dict[str, Any]]:
        return self._answer("list_server_options", server)

    def get_dns_setting(self, server: str, scope_id: str) -> List[Dict[str, Any]]:
        return self._answer("get_dns_setting", server, scope_id)

    def list_leases(self, server: str, scope_id: str) -> List[Dict[str, Any]]:
        return self._answer("list_leases", server, scope_id)

    def list_reservations(self, server: str, scope_id: str) -> List[Dict[str, Any]]:
        return self._answer("list_reservations", server, scope_id)

    def list_exclusions(self, server: str, scope_id: str) -> List[Dict[str, Any]]:
        return self._answer("list_exclusions", server, scope_id)

    def list_options(self, server: str, scope_id: str) -> List[Dict[str, Any]]:
        return self._answer("list_options", server, scope_id)

    def list_zones(self, server: str) -> List[Dict[str, Any]]:
        return self._answer("list_zones", server)

    def list_records(self, server: str, zone: str) -> List[Dict[str, Any]]:
        return self._answer("list_records", server, zone)


def _two_server_data() -> Dict[CallKey, List[Dict[str, Any]]]:
    # dhcp-a: active scope, 19/20 in use, no active leases, no reservations -> 3 + 2 + 1
    # dhcp-b: inactive scope that is otherwise healthy -> 3
    return {
        ("list_servers", "DHCP"): [{"DnsName": "dhcp-b"}, {"DnsName": "dhcp-a"}],
        ("list_scopes", "dhcp-a"): [
            {
                "ScopeId": "10.0.0.0",
                "Name": "Office",
                "StartRange": "10.0.0.1",
                "EndRange": "10.0.0.20",
                "SubnetMask": "255.255.255.0",
                "LeaseDuration": "8.00:00:00",
                "State": "Active",
                "Description": None,
            }
        ],
        ("list_scope_statistics", "dhcp-a"): [{"ScopeId": "10.0.0.0", "InUse": 19, "Free": 1}],
        ("list_server_options", "dhcp-a"): [{"OptionId": 6, "Name": "DNS Servers", "Value": ["10.0.0.53"]}],
        ("get_dns_setting", "dhcp-a", "10.0.0.0"): [{"DynamicUpdates": "OnClientRequest"}],
        ("list_leases", "dhcp-a", "10.0.0.0"): [
            {"IPAddress": "10.0.0.5", "ClientId": "aa-bb-cc-00-00-05", "HostName": "old", "AddressState": "Expired"}
        ],
        ("list_reservations", "dhcp-a", "10.0.0.0"): [],
        ("list_exclusions", "dhcp-a", "10.0.0.0"): [{"StartRange": "10.0.0.1", "EndRange": "10.0.0.2"}],
        ("list_options", "dhcp-a", "10.0.0.0"): [
            {"OptionId": 3, "Name": "Router", "Value": ["10.0.0.1"]},
            {"OptionId": 51, "Name": "Lease", "Value": ["691200"]},
        ],
        ("list_scopes", "dhcp-b"): [
            {
                "ScopeId": "192.168.1.0",
                "Name": "Lab",
                "StartRange": "192.168.1.10",
                "EndRange": "192.168.1.109",
                "SubnetMask": "255.255.255.0",
                "LeaseDuration": "1.00:00:00",
                "State": "Inactive",
                "Description": "lab network",
            }
        ],
        ("list_scope_statistics", "dhcp-b"): [{"ScopeId": "192.168.1.0", "InUse": 5, "Free": 95}],
        ("get_dns_setting", "dhcp-b", "192.168.1.0"): [{"DynamicUpdates": "Always"}],
        ("list_leases", "dhcp-b", "192.168.1.0"): [
            {
                "IPAddress": "192.168.1.50",
                "ClientId": "aa-bb-cc-00-01-50",
                "HostName": "lab-pc",
                "AddressState": "Active",
                "LeaseExpiryTime": "/Date(1700000000000)/",
            }
        ],
        ("list_reservations", "dhcp-b", "192.168.1.0"): [
            {"IPAddress": "192.168.1.10", "ClientId": "aa-bb-cc-00-01-10", "Name": "printer", "Type": "Both"}
        ],
    }


@pytest.fixture
def make_client() -> Callable[..., FakeRoleClient]:
    def _make(
        data: Optional[Dict[CallKey, List[Dict[str, Any]]]] = None,
        errors: Optional[Dict[CallKey, Exception]] = None,
    ) -> FakeRoleClient:
        return FakeRoleClient(data, errors)

    return _make


@pytest.fixture
def two_server_data() -> Dict[CallKey, List[Dict[str, Any]]]:
    return _two_server_data()


@pytest.fixture
def two_server_client(two_server_data) -> FakeRoleClient:
    return FakeRoleClient(two_server_data)
