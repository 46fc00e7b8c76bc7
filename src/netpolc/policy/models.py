"""Policy data models — immutable values produced by a compilation pass."""

from __future__ import annotations

import copy
import enum
from dataclasses import dataclass
from typing import Any

from netpolc.policy.selectors import ProtocolSelector, Target


class Direction(enum.Enum):
    """Which side of the anchor a rule fragment controls."""

    INGRESS = "ingress"
    EGRESS = "egress"


@dataclass(frozen=True)
class PortRule:
    """One ``toPorts[].ports[]`` entry. Ranges keep their ``end_port``."""

    port: int
    protocol: str
    end_port: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"port": self.port}
        if self.end_port is not None:
            data["endPort"] = self.end_port
        data["protocol"] = self.protocol
        return data


@dataclass(frozen=True)
class IcmpRule:
    """One ``icmps[]`` entry."""

    type: int
    family: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "family": self.family}


@dataclass(frozen=True)
class PortsBlock:
    """A ``toPorts[]`` entry: the port list plus optional L7 rules."""

    # Frozen but holds dicts, so instances compare by value and are unhashable.
    __hash__ = None  # type: ignore[assignment]

    ports: tuple[PortRule, ...]
    rules: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"ports": [p.to_dict() for p in self.ports]}
        if self.rules is not None:
            data["rules"] = copy.deepcopy(self.rules)
        return data


@dataclass(frozen=True)
class RuleFragment:
    """A single entry of a document's ``ingress[]`` or ``egress[]`` array.

    ``peers`` holds ``(field, values)`` pairs such as
    ``("toEndpoints", ({"matchLabels": {...}},))`` in emission order.
    """

    __hash__ = None  # type: ignore[assignment]

    direction: Direction
    peers: tuple[tuple[str, tuple[Any, ...]], ...]
    to_ports: tuple[PortsBlock, ...] = ()
    icmps: tuple[IcmpRule, ...] = ()
    dns_wildcard: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for field_name, values in self.peers:
            data[field_name] = [copy.deepcopy(v) for v in values]
        if self.to_ports:
            data["toPorts"] = [block.to_dict() for block in self.to_ports]
        if self.icmps:
            data["icmps"] = [icmp.to_dict() for icmp in self.icmps]
        return data

    @property
    def ports(self) -> tuple[PortRule, ...]:
        return tuple(p for block in self.to_ports for p in block.ports)


@dataclass(frozen=True)
class PolicyDocument:
    """A fully compiled firewall-rule document for the enforcement engine."""

    __hash__ = None  # type: ignore[assignment]

    name: str
    endpoint_selector: dict[str, Any] | None = None
    node_selector: dict[str, Any] | None = None
    ingress: tuple[RuleFragment, ...] = ()
    egress: tuple[RuleFragment, ...] = ()
    annotations: tuple[tuple[str, str], ...] = ()

    @property
    def anchor_kind(self) -> str:
        return "endpoint" if self.endpoint_selector is not None else "node"

    def metadata(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name}
        if self.annotations:
            data["annotations"] = dict(self.annotations)
        return data

    def spec(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.endpoint_selector is not None:
            data["endpointSelector"] = copy.deepcopy(self.endpoint_selector)
        if self.node_selector is not None:
            data["nodeSelector"] = copy.deepcopy(self.node_selector)
        if self.ingress:
            data["ingress"] = [f.to_dict() for f in self.ingress]
        if self.egress:
            data["egress"] = [f.to_dict() for f in self.egress]
        return data

    def to_dict(self) -> dict[str, Any]:
        """Flat wire form: ``metadata`` beside the selector and rule arrays."""
        return {"metadata": self.metadata(), **self.spec()}

    def to_manifest(self, api_version: str, kind: str) -> dict[str, Any]:
        """Kubernetes object form with the rules nested under ``spec``."""
        return {
            "apiVersion": api_version,
            "kind": kind,
            "metadata": self.metadata(),
            "spec": self.spec(),
        }


@dataclass(frozen=True)
class Rule:
    """A declared intent: *source* may reach *destination* on *protocols*."""

    source: Target
    destination: Target
    protocols: tuple[ProtocolSelector, ...] = ()
    dns_wildcard: bool = False
