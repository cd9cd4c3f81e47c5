"""Centralized enums for session state and element roles.

State machine transitions for the session are defined in
services/state_machine.py.
"""

from enum import Enum


class SessionState(str, Enum):
    """What an editing session is doing right now."""

    IDLE = "idle"
    COMPILING = "compiling"  # Document -> graph pass in flight
    WRITING = "writing"  # Graph -> document save in flight
    SWITCHING_MODE = "switching_mode"  # Edit/view switch; updates deferred


class EditorMode(str, Enum):
    """Editor mode; view mode only persists annotations."""

    EDIT = "edit"
    VIEW = "view"


class NodeRole(str, Enum):
    """Role tag carried by graph nodes (``topoViewerRole``)."""

    ROUTER = "router"
    BRIDGE = "bridge"
    GROUP = "group"
    CLOUD = "cloud"
    FREE_TEXT = "freeText"
    FREE_SHAPE = "freeShape"


class LinkType(str, Enum):
    """Link encodings understood by the canonicalizer."""

    VETH = "veth"
    HOST = "host"
    MGMT_NET = "mgmt-net"
    MACVLAN = "macvlan"
    VXLAN = "vxlan"
    VXLAN_STITCH = "vxlan-stitch"
    DUMMY = "dummy"


# Link types that carry a single container endpoint plus kind-specific fields
SINGLE_ENDPOINT_TYPES: set[str] = {
    LinkType.HOST.value,
    LinkType.MGMT_NET.value,
    LinkType.MACVLAN.value,
    LinkType.VXLAN.value,
    LinkType.VXLAN_STITCH.value,
    LinkType.DUMMY.value,
}

# Single-endpoint types identified by a host-side interface
HOSTY_TYPES: set[str] = {
    LinkType.HOST.value,
    LinkType.MGMT_NET.value,
    LinkType.MACVLAN.value,
}

# Single-endpoint types identified by remote/vni/udp-port
VXLAN_TYPES: set[str] = {
    LinkType.VXLAN.value,
    LinkType.VXLAN_STITCH.value,
}

# Node kinds rendered as bridges and eligible for per-interface aliases
BRIDGE_KINDS: set[str] = {"bridge", "ovs-bridge"}
