"""Rule emitter — renders selectors into directional rule fragments and documents."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any, Protocol

from netpolc.config import CompilerConfig
from netpolc.errors import (
    AnchorCapabilityError,
    CounterpartCapabilityError,
    SelectorValidationError,
)
from netpolc.policy.models import (
    Direction,
    IcmpRule,
    PolicyDocument,
    PortRule,
    PortsBlock,
    RuleFragment,
)
from netpolc.policy.selectors import (
    ANY_NAMESPACE,
    AllNodes,
    AllPods,
    Category,
    Cidr,
    Component,
    ControlPlane,
    Dns,
    EndpointSelector,
    Gateway,
    Health,
    Host,
    IcmpSelector,
    Icmpv4,
    Icmpv6,
    KubeDns,
    NodeSelector,
    PeerSelector,
    Pod,
    PortSelector,
    ProtocolSelector,
    Target,
    Tcp,
    Udp,
    as_target,
    has_category,
    is_icmp,
    is_kube_dns,
    is_port,
    unhandled_variant,
)

logger = logging.getLogger(__name__)

DNS_PORT = 53
ALL_PORTS = 0

_ANCHOR_ROLES = frozenset({Category.ENDPOINT, Category.NODE})

# Counterpart categories in emission order, per direction.
_EGRESS_FIELDS = (
    (Category.CIDR, "toCIDR"),
    (Category.FQDNS, "toFQDNs"),
    (Category.ENDPOINT, "toEndpoints"),
    (Category.ENTITY, "toEntities"),
)
_INGRESS_FIELDS = (
    (Category.CIDR, "fromCIDR"),
    (Category.ENDPOINT, "fromEndpoints"),
    (Category.ENTITY, "fromEntities"),
    (Category.NODE, "fromNodes"),
)

_NAMESPACE_LABEL = "k8s:io.kubernetes.pod.namespace"


class PortRuleAugmenter(Protocol):
    """Contributes L7 ``rules`` to a fragment's ``toPorts`` block."""

    def __call__(
        self,
        counterpart: PeerSelector,
        port_selectors: Sequence[PortSelector],
    ) -> dict[str, Any] | None:
        """Return a rules mapping to merge in, or None to contribute nothing."""
        ...


def covers_port(port_selectors: Iterable[PortSelector], port: int) -> bool:
    """Whether any scalar port or inclusive range in *port_selectors* covers *port*.

    A selector without ports stands for all of them.
    """
    for selector in port_selectors:
        if not selector.ports:
            return True
        for portish in selector.ports:
            if isinstance(portish, tuple):
                if portish[0] <= port <= portish[1]:
                    return True
            elif portish == port:
                return True
    return False


def dns_wildcard_augmenter(
    counterpart: PeerSelector,
    port_selectors: Sequence[PortSelector],
) -> dict[str, Any] | None:
    """Let clients of cluster DNS resolve any hostname.

    Hostname-based egress rules elsewhere only work if the DNS proxy sees the
    lookups, so traffic to kube-dns on port 53 carries a ``*`` pattern.
    """
    if is_kube_dns(counterpart) and covers_port(port_selectors, DNS_PORT):
        return {"dns": [{"matchPattern": "*"}]}
    return None


DEFAULT_AUGMENTERS: tuple[PortRuleAugmenter, ...] = (dns_wildcard_augmenter,)


class RuleEmitter:
    """Builds rule fragments and documents anchored at a single target.

    The anchor must be purely an endpoint or purely a node selector; a
    multi-category selector such as ``host()`` has to be pinned with
    ``as_node`` first.
    """

    def __init__(
        self,
        anchor: PeerSelector | Target,
        gateway_namespace: str = "envoy-gateway",
        augmenters: Sequence[PortRuleAugmenter] = DEFAULT_AUGMENTERS,
    ) -> None:
        self.target = as_target(anchor)
        self._gateway_namespace = gateway_namespace
        self._augmenters = tuple(augmenters)

        categories = self.target.anchor_categories
        roles = categories & _ANCHOR_ROLES
        if len(roles) != 1 or categories != roles:
            raise AnchorCapabilityError(
                f"invalid anchor selector: {self.target.selector!r} "
                "must be exactly one of endpoint or node"
            )

        self.endpoint_selector: dict[str, Any] | None = None
        self.node_selector: dict[str, Any] | None = None
        if Category.ENDPOINT in roles:
            self.endpoint_selector = self._endpoint_selector(
                self.target.selector, self.target.match_expressions  # type: ignore[arg-type]
            )
        else:
            node = _node_selector(self.target.selector, is_rule=False)  # type: ignore[arg-type]
            if node is None:
                raise AnchorCapabilityError(
                    f"invalid anchor selector: {self.target.selector!r}"
                )
            self.node_selector = (
                _as_expressions(node) if self.target.match_expressions else node
            )

    @classmethod
    def from_config(
        cls, anchor: PeerSelector | Target, config: CompilerConfig
    ) -> RuleEmitter:
        augmenters = DEFAULT_AUGMENTERS if config.dns_wildcard else ()
        return cls(
            anchor,
            gateway_namespace=config.gateway_namespace,
            augmenters=augmenters,
        )

    def egress(
        self,
        counterpart: PeerSelector | Target,
        protocols: Sequence[ProtocolSelector] = (),
    ) -> RuleFragment:
        """Fragment allowing the anchor to reach *counterpart*."""
        return self._fragment(counterpart, protocols, Direction.EGRESS)

    def ingress(
        self,
        counterpart: PeerSelector | Target,
        protocols: Sequence[ProtocolSelector] = (),
    ) -> RuleFragment:
        """Fragment allowing *counterpart* to reach the anchor."""
        return self._fragment(counterpart, protocols, Direction.INGRESS)

    def document(
        self,
        name: str,
        ingress: Iterable[RuleFragment] = (),
        egress: Iterable[RuleFragment] = (),
        annotations: Iterable[tuple[str, str]] = (),
    ) -> PolicyDocument:
        """Assemble a complete document anchored at this emitter's target."""
        doc = PolicyDocument(
            name=name,
            endpoint_selector=self.endpoint_selector,
            node_selector=self.node_selector,
            ingress=tuple(ingress),
            egress=tuple(egress),
            annotations=tuple(annotations),
        )
        logger.debug(
            "Emitted document %s (%s anchor, %d ingress, %d egress)",
            name,
            doc.anchor_kind,
            len(doc.ingress),
            len(doc.egress),
        )
        return doc

    def _fragment(
        self,
        counterpart: PeerSelector | Target,
        protocols: Sequence[ProtocolSelector],
        direction: Direction,
    ) -> RuleFragment:
        peer = as_target(counterpart)
        fields = _EGRESS_FIELDS if direction is Direction.EGRESS else _INGRESS_FIELDS

        peers: list[tuple[str, tuple[Any, ...]]] = []
        for category, field_name in fields:
            if not has_category(peer.selector, category):
                continue
            values = self._peer_values(peer, category)
            if values is not None:
                peers.append((field_name, values))

        if not peers:
            raise CounterpartCapabilityError(
                f"invalid {direction.value} counterpart: {peer.selector!r} "
                f"must be one of {', '.join(c.value for c, _ in fields)}"
            )

        port_selectors, icmp_selectors = _split_protocols(protocols)
        port_rules = expand_ports(port_selectors)

        to_ports: tuple[PortsBlock, ...] = ()
        dns_wildcard = False
        if port_rules:
            rules = self._augment(peer.selector, port_selectors)
            dns_wildcard = rules is not None and "dns" in rules
            to_ports = (PortsBlock(ports=port_rules, rules=rules),)

        fragment = RuleFragment(
            direction=direction,
            peers=tuple(peers),
            to_ports=to_ports,
            icmps=expand_icmps(icmp_selectors),
            dns_wildcard=dns_wildcard,
        )
        logger.debug(
            "Built %s fragment %r -> %r (%d ports, %d icmps)",
            direction.value,
            self.target.selector,
            peer.selector,
            len(port_rules),
            len(fragment.icmps),
        )
        return fragment

    def _augment(
        self,
        counterpart: PeerSelector,
        port_selectors: Sequence[PortSelector],
    ) -> dict[str, Any] | None:
        merged: dict[str, Any] = {}
        for augmenter in self._augmenters:
            extra = augmenter(counterpart, port_selectors)
            if extra:
                merged.update(extra)
        return merged or None

    def _peer_values(
        self, peer: Target, category: Category
    ) -> tuple[Any, ...] | None:
        selector = peer.selector
        if category is Category.CIDR and isinstance(selector, Cidr):
            return selector.ranges
        if category is Category.FQDNS and isinstance(selector, Dns):
            return tuple({"matchPattern": name} for name in selector.names)
        if category is Category.ENDPOINT:
            return (
                self._endpoint_selector(selector, peer.match_expressions),  # type: ignore[arg-type]
            )
        if category is Category.ENTITY:
            return (_entity(selector),)  # type: ignore[arg-type]
        if category is Category.NODE:
            node = _node_selector(selector, is_rule=True)  # type: ignore[arg-type]
            return None if node is None else (node,)
        return None

    def _endpoint_selector(
        self, selector: EndpointSelector, match_expressions: bool
    ) -> dict[str, Any]:
        labels = _endpoint_labels(selector, self._gateway_namespace)
        if not labels:
            return {}
        if match_expressions:
            return _as_expressions({"matchLabels": labels})
        return {"matchLabels": labels}


def expand_ports(selectors: Iterable[PortSelector]) -> tuple[PortRule, ...]:
    """Flatten port selectors into port entries; ranges stay a single entry.

    A selector without ports becomes port 0, which matches every port of that
    protocol only.
    """
    rules: list[PortRule] = []
    for selector in selectors:
        protocol = _port_protocol(selector)
        if not selector.ports:
            rules.append(PortRule(port=ALL_PORTS, protocol=protocol))
            continue
        for portish in selector.ports:
            if isinstance(portish, tuple):
                rules.append(
                    PortRule(port=portish[0], end_port=portish[1], protocol=protocol)
                )
            else:
                rules.append(PortRule(port=portish, protocol=protocol))
    return tuple(rules)


def expand_icmps(selectors: Iterable[IcmpSelector]) -> tuple[IcmpRule, ...]:
    """One ``{type, family}`` entry per declared ICMP type."""
    rules: list[IcmpRule] = []
    for selector in selectors:
        family = _icmp_family(selector)
        for icmp_type in selector.icmp_types:
            rules.append(IcmpRule(type=icmp_type, family=family))
    return tuple(rules)


def _split_protocols(
    protocols: Iterable[ProtocolSelector],
) -> tuple[list[PortSelector], list[IcmpSelector]]:
    ports: list[PortSelector] = []
    icmps: list[IcmpSelector] = []
    for protocol in protocols:
        if is_port(protocol):
            ports.append(protocol)  # type: ignore[arg-type]
        elif is_icmp(protocol):
            icmps.append(protocol)  # type: ignore[arg-type]
        else:
            raise SelectorValidationError(f"not a protocol selector: {protocol!r}")
    return ports, icmps


def _port_protocol(selector: PortSelector) -> str:
    if isinstance(selector, Tcp):
        return "TCP"
    if isinstance(selector, Udp):
        return "UDP"
    return unhandled_variant(selector)


def _icmp_family(selector: IcmpSelector) -> str:
    if isinstance(selector, Icmpv4):
        return "IPv4"
    if isinstance(selector, Icmpv6):
        return "IPv6"
    return unhandled_variant(selector)


def _namespace_labels(namespace: str) -> dict[str, str]:
    if namespace == ANY_NAMESPACE:
        return {}
    return {_NAMESPACE_LABEL: namespace}


def _endpoint_labels(
    selector: EndpointSelector, gateway_namespace: str
) -> dict[str, str]:
    if isinstance(selector, AllPods):
        return {}
    if isinstance(selector, Component):
        return {
            **_namespace_labels(selector.namespace),
            "k8s:app.kubernetes.io/component": selector.name,
        }
    if isinstance(selector, Gateway):
        return {
            "k8s:gateway.envoyproxy.io/owning-gateway-name": selector.name,
            _NAMESPACE_LABEL: gateway_namespace,
        }
    if isinstance(selector, Health):
        return {"reserved:health": ""}
    if isinstance(selector, KubeDns):
        return {_NAMESPACE_LABEL: "kube-system", "k8s:k8s-app": "kube-dns"}
    if isinstance(selector, Pod):
        return {
            **_namespace_labels(selector.namespace),
            "k8s:app.kubernetes.io/name": selector.name,
        }
    return unhandled_variant(selector)


def _node_selector(selector: NodeSelector, is_rule: bool) -> dict[str, Any] | None:
    # Node labels inside a rule are scoped with the "node:" source prefix.
    prefix = "node:" if is_rule else ""
    hostname_exists = {
        "matchExpressions": [
            {"key": f"{prefix}kubernetes.io/hostname", "operator": "Exists"}
        ]
    }
    if isinstance(selector, AllNodes):
        return hostname_exists
    if isinstance(selector, ControlPlane):
        return {"matchLabels": {f"{prefix}node-role.kubernetes.io/control-plane": ""}}
    if isinstance(selector, Host):
        # As a counterpart the local host is addressed as an entity instead.
        return None if is_rule else hostname_exists
    return unhandled_variant(selector)


def _entity(selector: Host) -> str:
    if isinstance(selector, Host):
        return "host"
    return unhandled_variant(selector)


def _as_expressions(selector: dict[str, Any]) -> dict[str, Any]:
    # Marker labels (empty value) become Exists; valued labels keep their value.
    labels = selector.get("matchLabels", {})
    expressions = list(selector.get("matchExpressions", []))
    for key, value in labels.items():
        if value == "":
            expressions.append({"key": key, "operator": "Exists"})
        else:
            expressions.append({"key": key, "operator": "In", "values": [value]})
    if not expressions:
        return {}
    return {"matchExpressions": expressions}
