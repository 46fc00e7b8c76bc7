"""Policy DSL: selectors, the rule emitter, the builder and catalog loading."""

from netpolc.policy.builder import (
    Catalog,
    PolicyBuilder,
    TargetedPolicy,
    create_policy_builder,
    policy,
)
from netpolc.policy.models import PolicyDocument, Rule, RuleFragment
from netpolc.policy.selectors import (
    Category,
    Target,
    all_nodes,
    all_pods,
    as_endpoint,
    as_node,
    cidr,
    cidrs,
    component,
    control_plane,
    dns,
    gateway,
    health,
    host,
    icmpv4,
    icmpv6,
    kube_dns,
    pod,
    target,
    tcp,
    udp,
)

__all__ = [
    "Catalog",
    "Category",
    "PolicyBuilder",
    "PolicyDocument",
    "Rule",
    "RuleFragment",
    "Target",
    "TargetedPolicy",
    "all_nodes",
    "all_pods",
    "as_endpoint",
    "as_node",
    "cidr",
    "cidrs",
    "component",
    "control_plane",
    "create_policy_builder",
    "dns",
    "gateway",
    "health",
    "host",
    "icmpv4",
    "icmpv6",
    "kube_dns",
    "pod",
    "policy",
    "target",
    "tcp",
    "udp",
]
