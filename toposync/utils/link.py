"""Link parsing and canonicalization.

Links appear in several equivalent encodings: a brief ``endpoints`` list of
``node:iface`` strings, an extended ``type: veth`` form with endpoint maps, and
single-endpoint forms (host, mgmt-net, macvlan, vxlan, vxlan-stitch, dummy)
whose far side is a synthetic special endpoint. Everything here reduces those
encodings to one order-independent identity so the compiler and writer can
match links across formats, endpoint order and node renames.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping

from toposync.state import HOSTY_TYPES, SINGLE_ENDPOINT_TYPES, VXLAN_TYPES, LinkType

HOST = LinkType.HOST.value
MGMT_NET = LinkType.MGMT_NET.value
PREFIX_MACVLAN = "macvlan:"
PREFIX_VXLAN = "vxlan:"
PREFIX_VXLAN_STITCH = "vxlan-stitch:"
PREFIX_DUMMY = "dummy"

_DUMMY_RE = re.compile(r"^dummy\d*$")

# Literal endpoint forms that are already special node ids with no interface
_LITERAL_PREFIXES = (PREFIX_MACVLAN, PREFIX_VXLAN_STITCH, PREFIX_VXLAN)


@dataclass(frozen=True)
class Endpoint:
    """One side of a link as a ``(node, interface)`` pair."""

    node: str
    iface: str = ""

    def __str__(self) -> str:
        return f"{self.node}:{self.iface}" if self.iface else self.node


@dataclass(frozen=True)
class CanonicalLinkKey:
    """Order- and encoding-independent identity of one link.

    veth links keep both endpoints sorted; single-endpoint links keep only
    the container side, since the special side is implied by the type.
    """

    type: str
    endpoints: tuple[str, ...]

    def __str__(self) -> str:
        return "|".join((self.type, *self.endpoints))


@dataclass
class DummyContext:
    """Per-pass allocator for ``dummy<N>`` endpoint ids.

    Ids are assigned in link order and cached per link object, so both
    compile sweeps over the same document agree. They are not stable across
    separate passes once links are added or removed.
    """

    counter: int = 0
    _assigned: dict[int, tuple[Any, str]] = field(default_factory=dict)

    def dummy_for(self, link: Any) -> str:
        cached = self._assigned.get(id(link))
        if cached is not None and cached[0] is link:
            return cached[1]
        name = f"{PREFIX_DUMMY}{self.counter}"
        self.counter += 1
        # Hold a reference so id(link) cannot be reused within the pass
        self._assigned[id(link)] = (link, name)
        return name


@dataclass(frozen=True)
class NormalizedLink:
    """A link reduced to exactly two endpoints."""

    type: str
    a: Endpoint
    b: Endpoint
    raw_a: Any  # Original endpoint value (string or mapping)
    raw_b: Any


def is_dummy_id(node: str) -> bool:
    return bool(_DUMMY_RE.match(node))


def split_endpoint(value: Any) -> Endpoint:
    """Parse ``node:iface``, bare ``node``, a literal special id, or a mapping.

    Args:
        value: Endpoint string or ``{node, interface}`` mapping

    Returns:
        Endpoint; literal special forms carry an empty interface
    """
    if isinstance(value, Mapping):
        return Endpoint(str(value.get("node") or ""), str(value.get("interface") or ""))
    text = str(value or "")
    if text.startswith(_LITERAL_PREFIXES) or is_dummy_id(text):
        return Endpoint(text, "")
    if ":" in text:
        node, iface = text.split(":", 1)
        return Endpoint(node, iface)
    return Endpoint(text, "")


def special_link_type(node: str) -> str | None:
    """Link type implied by a special endpoint id, or None for regular nodes."""
    if node == HOST or node.startswith(f"{HOST}:"):
        return HOST
    if node == MGMT_NET or node.startswith(f"{MGMT_NET}:"):
        return MGMT_NET
    if node.startswith(PREFIX_MACVLAN):
        return LinkType.MACVLAN.value
    if node.startswith(PREFIX_VXLAN_STITCH):
        return LinkType.VXLAN_STITCH.value
    if node.startswith(PREFIX_VXLAN):
        return LinkType.VXLAN.value
    if is_dummy_id(node):
        return LinkType.DUMMY.value
    return None


def is_special_endpoint(node: str) -> bool:
    return special_link_type(node) is not None


def resolve_actual_node(node: str, iface: str) -> str:
    """Graph node id for an endpoint; host and mgmt-net fold the interface in."""
    if node in (HOST, MGMT_NET):
        return f"{node}:{iface}"
    return node


def should_omit_endpoint(node: str) -> bool:
    """Special sides whose interface name is not shown on the edge."""
    return (
        node in (HOST, MGMT_NET)
        or node.startswith(PREFIX_MACVLAN)
        or is_dummy_id(node)
    )


def special_endpoint_id(link_type: str, link: Mapping[str, Any], ctx: DummyContext) -> str:
    """Synthetic far-side id for a single-endpoint link.

    Args:
        link_type: One of the single-endpoint link types
        link: The link mapping
        ctx: Dummy allocator scoped to the current pass

    Returns:
        ``host:<if>``, ``mgmt-net:<if>``, ``macvlan:<if>``,
        ``vxlan[-stitch]:<remote>/<vni>/<port>`` or ``dummy<N>``
    """
    if link_type in HOSTY_TYPES:
        return f"{link_type}:{link.get('host-interface') or ''}"
    if link_type in VXLAN_TYPES:
        remote = link.get("remote") or ""
        vni = link.get("vni")
        port = link.get("udp-port")
        return (
            f"{link_type}:{remote}/{'' if vni is None else vni}/{'' if port is None else port}"
        )
    return ctx.dummy_for(link)


def parse_special_id(node_id: str) -> dict[str, str]:
    """Recover kind-specific fields encoded in a special endpoint id."""
    link_type = special_link_type(node_id)
    if link_type in HOSTY_TYPES:
        _, _, host_iface = node_id.partition(":")
        return {"host-interface": host_iface} if host_iface else {}
    if link_type in VXLAN_TYPES:
        _, _, rest = node_id.partition(":")
        parts = rest.split("/")
        if len(parts) != 3:
            return {}
        fields = dict(zip(("remote", "vni", "udp-port"), parts))
        return {key: value for key, value in fields.items() if value}
    return {}


def normalize_link(link: Any, ctx: DummyContext) -> NormalizedLink | None:
    """Reduce any link encoding to two endpoints.

    Returns:
        NormalizedLink, or None when either endpoint is missing
    """
    if not isinstance(link, Mapping):
        return None
    link_type = str(link.get("type") or "")
    if link_type in SINGLE_ENDPOINT_TYPES:
        raw_a = link.get("endpoint")
        raw_b = special_endpoint_id(link_type, link, ctx) if raw_a else None
    else:
        endpoints = link.get("endpoints")
        if not isinstance(endpoints, list) or len(endpoints) < 2:
            return None
        raw_a, raw_b = endpoints[0], endpoints[1]
        link_type = link_type or LinkType.VETH.value
    if not raw_a or not raw_b:
        return None
    a = split_endpoint(raw_a)
    b = split_endpoint(raw_b)
    if not a.node or not b.node:
        return None
    return NormalizedLink(type=link_type, a=a, b=b, raw_a=raw_a, raw_b=raw_b)


# =============================================================================
# Canonical keys
# =============================================================================


def _endpoint_special_type(ep: Endpoint) -> str | None:
    if ep.node in (HOST, MGMT_NET):
        return ep.node
    return special_link_type(ep.node)


def canonical_from_pair(a: Endpoint, b: Endpoint) -> CanonicalLinkKey:
    """Canonical key for two endpoints, independent of their order.

    When exactly one side is a special endpoint, the link type comes from
    that side and only the container side is kept.
    """
    a_type = _endpoint_special_type(a)
    b_type = _endpoint_special_type(b)
    if a_type and not b_type:
        return CanonicalLinkKey(a_type, (str(b),))
    if b_type and not a_type:
        return CanonicalLinkKey(b_type, (str(a),))
    first, second = sorted((str(a), str(b)))
    return CanonicalLinkKey(LinkType.VETH.value, (first, second))


def canonical_from_link(link: Any) -> CanonicalLinkKey | None:
    """Canonical key for a document link in any encoding."""
    if not isinstance(link, Mapping):
        return None
    link_type = str(link.get("type") or "")
    if link_type in SINGLE_ENDPOINT_TYPES:
        raw = link.get("endpoint")
        if not raw:
            return None
        ep = split_endpoint(raw)
        if not ep.node:
            return None
        return CanonicalLinkKey(link_type, (str(ep),))
    endpoints = link.get("endpoints")
    if not isinstance(endpoints, list) or len(endpoints) < 2:
        return None
    a = split_endpoint(endpoints[0])
    b = split_endpoint(endpoints[1])
    if not a.node or not b.node:
        return None
    return canonical_from_pair(a, b)


def endpoint_mac(value: Any) -> str:
    if isinstance(value, Mapping):
        return str(value.get("mac") or "")
    return ""
