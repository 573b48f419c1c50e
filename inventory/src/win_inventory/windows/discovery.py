from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Sequence

from ..core.traversal import normalize_server_names
from ..logging import get_logger
from ..util.errors import DiscoveryError, RoleClientError
from .client import RoleClient

LOG = get_logger(__name__)


def parse_server_list(text: str) -> List[str]:
    """
    Parse a server list as written by hand: names separated by commas or
    newlines, '#' starts a comment. Order is preserved; normalization happens
    in normalize_server_names.
    """
    names: List[str] = []
    for line in (text or "").splitlines():
        line = line.split("#", 1)[0]
        names.extend(part.strip() for part in line.split(",") if part.strip())
    return names


def read_server_file(path: Path) -> List[str]:
    if not path.exists():
        raise FileNotFoundError(f"Server list not found: {path}")
    return parse_server_list(path.read_text(encoding="utf-8"))


def list_role_servers(client: RoleClient, role: str) -> List[str]:
    """
    Ask Active Directory for the servers holding role (DHCP authorized in the
    domain, or domain controllers for DNS). Returns the deterministic,
    deduplicated list; any failure is a DiscoveryError since nothing can be
    collected without a server set.
    """
    try:
        rows = client.list_servers(role)
    except RoleClientError as e:
        raise DiscoveryError(f"Failed to enumerate {role} servers: {e}") from e
    names = [str(r.get("DnsName") or r.get("IPAddress") or "").strip() for r in rows]
    return normalize_server_names(names)


def collect_servers(
    client: RoleClient,
    role: str,
    explicit: Optional[Sequence[str]] = None,
    servers_file: Optional[Path] = None,
) -> List[str]:
    """
    Resolve the server set for a run. Explicit names and a servers file take
    precedence over directory discovery. An empty result is a hard failure.
    """
    requested: List[str] = list(explicit or [])
    if servers_file is not None:
        requested.extend(read_server_file(servers_file))

    if requested:
        servers = normalize_server_names(requested)
        source = "explicit"
    else:
        servers = list_role_servers(client, role)
        source = "directory"

    if not servers:
        raise DiscoveryError(f"No {role} servers to inventory")
    LOG.info(
        "Resolved server set",
        extra={"step": "servers", "phase": "complete", "role": role, "source": source, "count": len(servers)},
    )
    return servers
