"""Policy builder — the author-facing DSL over the rule emitter.

Usage:
    catalog = Catalog()
    policy = create_policy_builder(catalog)

    policy("api-to-db").allow_between(pod("api", "app"), pod("db", "app"), tcp(5432))

    (
        policy("api-to-stripe--egress")
        .targets(pod("api", "app"))
        .allow_egress_to(dns("api.stripe.com"), tcp(443))
    )
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any, Union

from netpolc.config import CompilerConfig
from netpolc.errors import DuplicatePolicyError
from netpolc.policy.emitter import RuleEmitter
from netpolc.policy.models import PolicyDocument, Rule, RuleFragment
from netpolc.policy.selectors import (
    DEFAULT_PORT_LABEL,
    PeerSelector,
    ProtocolSelector,
    Target,
    as_target,
    is_gateway,
)

logger = logging.getLogger(__name__)

# A protocol selector, or the label of a port registered on the destination target.
ProtocolArg = Union[ProtocolSelector, str]


def resolve_protocols(
    destination: Target, protocols: Sequence[ProtocolArg]
) -> tuple[ProtocolSelector, ...]:
    """Replace port labels with the destination's registered selectors.

    With no protocols at all, the destination's ``default`` label is used
    when it has one.
    """
    if not protocols and DEFAULT_PORT_LABEL in destination.port_labels:
        protocols = (DEFAULT_PORT_LABEL,)

    resolved: list[ProtocolSelector] = []
    seen_labels: set[str] = set()
    for protocol in protocols:
        if isinstance(protocol, str):
            if protocol in seen_labels:
                continue
            seen_labels.add(protocol)
            resolved.extend(destination.resolve_port(protocol))
        else:
            resolved.append(protocol)
    return tuple(resolved)


class TargetedPolicy:
    """A single document anchored at one target, built up one rule at a time.

    Each ``allow_*`` call renders its fragment completely before it is kept,
    so a failing call leaves the policy exactly as it was.
    """

    def __init__(
        self,
        name: str,
        anchor: PeerSelector | Target,
        config: CompilerConfig | None = None,
        catalog: Catalog | None = None,
    ) -> None:
        self.name = name
        self.target = as_target(anchor)
        self._config = config or CompilerConfig()
        self._catalog = catalog
        self._emitter = RuleEmitter.from_config(self.target, self._config)
        self._ingress: tuple[RuleFragment, ...] = ()
        self._egress: tuple[RuleFragment, ...] = ()
        self._annotations: dict[str, str] = {}
        self.rules: tuple[Rule, ...] = ()

    def allow_egress_to(
        self, counterpart: PeerSelector | Target, *protocols: ProtocolArg
    ) -> TargetedPolicy:
        """Allow the anchor to reach *counterpart* on *protocols*."""
        peer = as_target(counterpart)
        resolved = resolve_protocols(peer, protocols)
        fragment = self._emitter.egress(peer, resolved)
        self._egress = self._egress + (fragment,)
        self._record(
            Rule(
                source=self.target,
                destination=peer,
                protocols=resolved,
                dns_wildcard=fragment.dns_wildcard,
            )
        )
        return self

    def allow_ingress_from(
        self, counterpart: PeerSelector | Target, *protocols: ProtocolArg
    ) -> TargetedPolicy:
        """Allow *counterpart* to reach the anchor on *protocols*."""
        peer = as_target(counterpart)
        resolved = resolve_protocols(self.target, protocols)
        fragment = self._emitter.ingress(peer, resolved)
        self._ingress = self._ingress + (fragment,)
        self._record(
            Rule(
                source=peer,
                destination=self.target,
                protocols=resolved,
                dns_wildcard=fragment.dns_wildcard,
            )
        )
        return self

    def sync_with_router(self) -> TargetedPolicy:
        """Mark the document for mirroring into the border router's firewall."""
        if not is_gateway(self.target.selector):
            logger.warning(
                "Policy %s requests router sync but is anchored at %r, not a gateway",
                self.name,
                self.target.selector,
            )
        self._annotations[self._config.router_sync_annotation] = ""
        return self

    def build(self) -> PolicyDocument:
        """Return the immutable document for everything declared so far."""
        return self._emitter.document(
            self.name,
            ingress=self._ingress,
            egress=self._egress,
            annotations=tuple(self._annotations.items()),
        )

    def _record(self, rule: Rule) -> None:
        self.rules = self.rules + (rule,)
        if self._catalog is not None:
            self._catalog.record(rule)


class PolicyBuilder:
    """Entry point returned by ``policy(name)``."""

    def __init__(
        self,
        name: str,
        catalog: Catalog | None = None,
        config: CompilerConfig | None = None,
    ) -> None:
        self.name = name
        self._catalog = catalog
        if config is None:
            config = catalog.config if catalog is not None else CompilerConfig()
        self._config = config

    def allow_between(
        self,
        source: PeerSelector | Target,
        destination: PeerSelector | Target,
        *protocols: ProtocolArg,
    ) -> tuple[PolicyDocument, PolicyDocument]:
        """Emit a matching egress/ingress document pair for source -> destination."""
        src = as_target(source)
        dst = as_target(destination)
        resolved = resolve_protocols(dst, protocols)

        egress_emitter = RuleEmitter.from_config(src, self._config)
        egress_fragment = egress_emitter.egress(dst, resolved)
        egress_doc = egress_emitter.document(
            f"{self.name}--egress", egress=(egress_fragment,)
        )

        ingress_emitter = RuleEmitter.from_config(dst, self._config)
        ingress_fragment = ingress_emitter.ingress(src, resolved)
        ingress_doc = ingress_emitter.document(
            f"{self.name}--ingress", ingress=(ingress_fragment,)
        )

        if self._catalog is not None:
            self._catalog.add(egress_doc, ingress_doc)
            self._catalog.record(
                Rule(
                    source=src,
                    destination=dst,
                    protocols=resolved,
                    dns_wildcard=(
                        egress_fragment.dns_wildcard or ingress_fragment.dns_wildcard
                    ),
                )
            )
        return egress_doc, ingress_doc

    def targets(self, target: PeerSelector | Target) -> TargetedPolicy:
        """Start a one-sided document anchored at *target*."""
        policy = TargetedPolicy(
            self.name, target, config=self._config, catalog=self._catalog
        )
        if self._catalog is not None:
            self._catalog.add(policy)
        return policy


class Catalog:
    """Ordered output tree of every document declared during one pass."""

    def __init__(
        self, name: str = "catalog", config: CompilerConfig | None = None
    ) -> None:
        self.name = name
        self.config = config or CompilerConfig()
        self._entries: list[PolicyDocument | TargetedPolicy] = []
        self._names: set[str] = set()
        self._rules: list[Rule] = []

    def __len__(self) -> int:
        return len(self._entries)

    def policy(self, name: str) -> PolicyBuilder:
        return PolicyBuilder(name, catalog=self, config=self.config)

    def add(self, *entries: PolicyDocument | TargetedPolicy) -> None:
        """Attach documents (or pending targeted policies); names must be unique."""
        names = [entry.name for entry in entries]
        for name in names:
            if name in self._names or names.count(name) > 1:
                raise DuplicatePolicyError(f"duplicate policy name: {name}")
        self._entries.extend(entries)
        self._names.update(names)

    def record(self, rule: Rule) -> None:
        self._rules.append(rule)

    def rules(self) -> list[Rule]:
        return list(self._rules)

    def documents(self) -> list[PolicyDocument]:
        """Materialize every document in declaration order."""
        return [
            entry.build() if isinstance(entry, TargetedPolicy) else entry
            for entry in self._entries
        ]

    def manifests(self) -> list[dict[str, Any]]:
        return [
            doc.to_manifest(self.config.api_version, self.config.kind)
            for doc in self.documents()
        ]


def policy(name: str, config: CompilerConfig | None = None) -> PolicyBuilder:
    """Builder for *name* that is not attached to any catalog."""
    return PolicyBuilder(name, config=config)


def create_policy_builder(catalog: Catalog) -> Callable[[str], PolicyBuilder]:
    """Return a ``policy(name)`` function bound to *catalog*."""
    return catalog.policy
