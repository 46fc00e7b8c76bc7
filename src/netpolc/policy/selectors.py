"""Selector factory — immutable, category-tagged descriptors of network peers.

Every selector is a frozen dataclass with a class-level ``type`` tag and a
fixed set of capability ``categories``.  Other modules decide how to treat a
selector only through :func:`has_category` (and its named wrappers); switching
on the concrete variant is reserved for the sub-builders that render it.
"""

from __future__ import annotations

import enum
import ipaddress
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import ClassVar, NoReturn, Union

from netpolc.errors import SelectorValidationError, UnhandledSelectorVariantError

ANY_NAMESPACE = "*"
DEFAULT_PORT_LABEL = "default"


class Category(enum.Enum):
    """Structural roles a selector may play."""

    CIDR = "cidr"
    ENDPOINT = "endpoint"
    ENTITY = "entity"
    FQDNS = "fqdns"
    ICMP = "icmp"
    NODE = "node"
    PORT = "port"


Port = int
PortRange = tuple[int, int]
Portish = Union[Port, PortRange]


@dataclass(frozen=True)
class AllNodes:
    type: ClassVar[str] = "all-nodes"
    categories: ClassVar[frozenset[Category]] = frozenset({Category.NODE})


@dataclass(frozen=True)
class AllPods:
    type: ClassVar[str] = "all-pods"
    categories: ClassVar[frozenset[Category]] = frozenset({Category.ENDPOINT})


@dataclass(frozen=True)
class Cidr:
    ranges: tuple[str, ...]

    type: ClassVar[str] = "cidr"
    categories: ClassVar[frozenset[Category]] = frozenset({Category.CIDR})


@dataclass(frozen=True)
class Component:
    name: str
    namespace: str

    type: ClassVar[str] = "component"
    categories: ClassVar[frozenset[Category]] = frozenset({Category.ENDPOINT})


@dataclass(frozen=True)
class ControlPlane:
    type: ClassVar[str] = "control-plane"
    categories: ClassVar[frozenset[Category]] = frozenset({Category.NODE})


@dataclass(frozen=True)
class Dns:
    names: tuple[str, ...]

    type: ClassVar[str] = "dns"
    categories: ClassVar[frozenset[Category]] = frozenset({Category.FQDNS})


@dataclass(frozen=True)
class Gateway:
    name: str

    type: ClassVar[str] = "gateway"
    categories: ClassVar[frozenset[Category]] = frozenset({Category.ENDPOINT})


@dataclass(frozen=True)
class Health:
    type: ClassVar[str] = "health"
    categories: ClassVar[frozenset[Category]] = frozenset({Category.ENDPOINT})


@dataclass(frozen=True)
class Host:
    type: ClassVar[str] = "host"
    categories: ClassVar[frozenset[Category]] = frozenset(
        {Category.ENTITY, Category.NODE}
    )


@dataclass(frozen=True)
class Icmpv4:
    icmp_types: tuple[int, ...]

    type: ClassVar[str] = "icmpv4"
    categories: ClassVar[frozenset[Category]] = frozenset({Category.ICMP})


@dataclass(frozen=True)
class Icmpv6:
    icmp_types: tuple[int, ...]

    type: ClassVar[str] = "icmpv6"
    categories: ClassVar[frozenset[Category]] = frozenset({Category.ICMP})


@dataclass(frozen=True)
class KubeDns:
    type: ClassVar[str] = "kube-dns"
    categories: ClassVar[frozenset[Category]] = frozenset({Category.ENDPOINT})


@dataclass(frozen=True)
class Pod:
    name: str
    namespace: str

    type: ClassVar[str] = "pod"
    categories: ClassVar[frozenset[Category]] = frozenset({Category.ENDPOINT})


@dataclass(frozen=True)
class Tcp:
    ports: tuple[Portish, ...]

    type: ClassVar[str] = "tcp"
    categories: ClassVar[frozenset[Category]] = frozenset({Category.PORT})


@dataclass(frozen=True)
class Udp:
    ports: tuple[Portish, ...]

    type: ClassVar[str] = "udp"
    categories: ClassVar[frozenset[Category]] = frozenset({Category.PORT})


EndpointSelector = Union[AllPods, Component, Gateway, Health, KubeDns, Pod]
NodeSelector = Union[AllNodes, ControlPlane, Host]
PortSelector = Union[Tcp, Udp]
IcmpSelector = Union[Icmpv4, Icmpv6]
ProtocolSelector = Union[PortSelector, IcmpSelector]
PeerSelector = Union[Cidr, Dns, EndpointSelector, NodeSelector]
Selector = Union[PeerSelector, ProtocolSelector]


@dataclass(frozen=True)
class Target:
    """A peer selector plus how it behaves when it anchors a document.

    ``ports`` holds labelled protocol selectors (``(label, selectors)``
    pairs) so rules can refer to a destination's well-known ports by name.
    ``match_expressions`` renders the anchor with ``Exists`` expressions
    instead of label equality.  ``anchor_as`` pins a multi-category selector
    to a single anchor role.
    """

    selector: PeerSelector
    ports: tuple[tuple[str, tuple[ProtocolSelector, ...]], ...] = ()
    match_expressions: bool = False
    anchor_as: Category | None = None

    @property
    def anchor_categories(self) -> frozenset[Category]:
        if self.anchor_as is not None:
            return frozenset({self.anchor_as})
        return self.selector.categories

    @property
    def port_labels(self) -> tuple[str, ...]:
        return tuple(label for label, _ in self.ports)

    def resolve_port(self, label: str) -> tuple[ProtocolSelector, ...]:
        """Look up the protocol selectors registered under *label*."""
        for name, selectors in self.ports:
            if name == label:
                return selectors
        raise SelectorValidationError(
            f"port label '{label}' not defined on target {self.selector!r}"
        )


# --- Category predicates -------------------------------------------------


def has_category(selector: Selector, category: Category) -> bool:
    """Whether *selector* satisfies *category*."""
    return category in selector.categories


def is_cidr(selector: Selector) -> bool:
    return has_category(selector, Category.CIDR)


def is_endpoint(selector: Selector) -> bool:
    return has_category(selector, Category.ENDPOINT)


def is_entity(selector: Selector) -> bool:
    return has_category(selector, Category.ENTITY)


def is_fqdns(selector: Selector) -> bool:
    return has_category(selector, Category.FQDNS)


def is_icmp(selector: Selector) -> bool:
    return has_category(selector, Category.ICMP)


def is_node(selector: Selector) -> bool:
    return has_category(selector, Category.NODE)


def is_port(selector: Selector) -> bool:
    return has_category(selector, Category.PORT)


def is_gateway(selector: Selector) -> bool:
    return isinstance(selector, Gateway)


def is_kube_dns(selector: Selector) -> bool:
    return isinstance(selector, KubeDns)


def unhandled_variant(selector: NoReturn) -> NoReturn:
    """Terminal branch of an exhaustive dispatch over selector variants.

    Typed ``NoReturn`` so a type checker reports any variant that reaches it.
    """
    raise UnhandledSelectorVariantError(f"unhandled selector variant: {selector!r}")


# --- Constructors --------------------------------------------------------


def all_nodes() -> AllNodes:
    return AllNodes()


def all_pods() -> AllPods:
    return AllPods()


def cidrs(*ranges: str) -> Cidr:
    """Select one or more CIDR blocks."""
    if not ranges:
        raise SelectorValidationError("empty CIDR list")
    for r in ranges:
        try:
            ipaddress.ip_network(r, strict=False)
        except ValueError as exc:
            raise SelectorValidationError(f"invalid CIDR '{r}': {exc}") from exc
    return Cidr(ranges=tuple(ranges))


cidr = cidrs


def component(name: str, namespace: str) -> Component:
    """Select pods by ``app.kubernetes.io/component`` (``"*"`` = any namespace)."""
    return Component(name=name, namespace=namespace)


def control_plane() -> ControlPlane:
    return ControlPlane()


def dns(*names: str) -> Dns:
    """Select external hostnames; each name is a match pattern (``*`` allowed)."""
    if not names:
        raise SelectorValidationError("empty DNS name list")
    return Dns(names=tuple(names))


def gateway(name: str) -> Gateway:
    return Gateway(name=name)


def health() -> Health:
    return Health()


def host() -> Host:
    return Host()


def icmpv4(*icmp_types: int) -> Icmpv4:
    return Icmpv4(icmp_types=_icmp_types(icmp_types))


def icmpv6(*icmp_types: int) -> Icmpv6:
    return Icmpv6(icmp_types=_icmp_types(icmp_types))


def kube_dns() -> KubeDns:
    return KubeDns()


def pod(name: str, namespace: str) -> Pod:
    """Select pods by ``app.kubernetes.io/name`` (``"*"`` = any namespace)."""
    return Pod(name=name, namespace=namespace)


def tcp(*ports: int | Sequence[int]) -> Tcp:
    """TCP ports; a ``(start, end)`` pair is an inclusive range."""
    return Tcp(ports=_portish(ports))


def udp(*ports: int | Sequence[int]) -> Udp:
    """UDP ports; a ``(start, end)`` pair is an inclusive range."""
    return Udp(ports=_portish(ports))


def target(
    selector: PeerSelector | Target,
    match_expressions: bool = False,
    anchor_as: Category | None = None,
    **ports: ProtocolSelector | Iterable[ProtocolSelector],
) -> Target:
    """Wrap *selector* with labelled ports and anchor options."""
    base = as_target(selector)
    labelled = dict(base.ports)
    for label, value in ports.items():
        if isinstance(value, (Tcp, Udp, Icmpv4, Icmpv6)):
            selectors: tuple[ProtocolSelector, ...] = (value,)
        elif isinstance(value, Iterable) and not isinstance(value, (str, bytes)):
            selectors = tuple(value)
        else:
            raise SelectorValidationError(
                f"port label '{label}' must hold tcp/udp/icmp selectors, got {value!r}"
            )
        for s in selectors:
            if not _is_protocol(s):
                raise SelectorValidationError(
                    f"port label '{label}' must hold tcp/udp/icmp selectors, got {s!r}"
                )
        labelled[label] = selectors
    return Target(
        selector=base.selector,
        ports=tuple(labelled.items()),
        match_expressions=match_expressions or base.match_expressions,
        anchor_as=anchor_as if anchor_as is not None else base.anchor_as,
    )


def as_node(selector: PeerSelector | Target) -> Target:
    """Pin *selector* to the node role when it anchors a document."""
    return _pin(selector, Category.NODE)


def as_endpoint(selector: PeerSelector | Target) -> Target:
    """Pin *selector* to the endpoint role when it anchors a document."""
    return _pin(selector, Category.ENDPOINT)


def as_target(value: PeerSelector | Target) -> Target:
    if isinstance(value, Target):
        return value
    return Target(selector=value)


def _pin(selector: PeerSelector | Target, category: Category) -> Target:
    base = as_target(selector)
    if not has_category(base.selector, category):
        raise SelectorValidationError(
            f"{base.selector!r} cannot act as a {category.value} selector"
        )
    return Target(
        selector=base.selector,
        ports=base.ports,
        match_expressions=base.match_expressions,
        anchor_as=category,
    )


def _is_protocol(value: object) -> bool:
    return isinstance(value, (Tcp, Udp, Icmpv4, Icmpv6))


def _portish(values: Iterable[int | Sequence[int]]) -> tuple[Portish, ...]:
    result: list[Portish] = []
    for value in values:
        if isinstance(value, int) and not isinstance(value, bool):
            result.append(_check_port(value))
            continue
        if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
            raise SelectorValidationError(f"invalid port: {value!r}")
        if len(value) != 2:
            raise SelectorValidationError(
                f"port range must be a (start, end) pair: {value!r}"
            )
        start, end = (_check_port(v) for v in value)
        if start > end:
            raise SelectorValidationError(f"port range start > end: {value!r}")
        result.append((start, end))
    return tuple(result)


def _check_port(value: object) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise SelectorValidationError(f"invalid port: {value!r}")
    if not 1 <= value <= 65535:
        raise SelectorValidationError(f"port out of range: {value}")
    return value


def _icmp_types(values: Iterable[int]) -> tuple[int, ...]:
    result = tuple(values)
    for v in result:
        if not isinstance(v, int) or isinstance(v, bool) or not 0 <= v <= 255:
            raise SelectorValidationError(f"invalid ICMP type: {v!r}")
    return result
