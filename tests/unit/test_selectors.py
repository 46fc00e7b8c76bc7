"""Tests for the selector factory and category predicates."""

import dataclasses

import pytest

from netpolc.errors import SelectorValidationError, UnhandledSelectorVariantError
from netpolc.policy.selectors import (
    Category,
    Target,
    all_nodes,
    all_pods,
    as_endpoint,
    as_node,
    as_target,
    cidr,
    cidrs,
    component,
    control_plane,
    dns,
    gateway,
    has_category,
    health,
    host,
    icmpv4,
    icmpv6,
    is_endpoint,
    is_entity,
    is_gateway,
    is_kube_dns,
    is_node,
    kube_dns,
    pod,
    target,
    tcp,
    udp,
    unhandled_variant,
)


@pytest.mark.parametrize(
    ("selector", "type_", "categories"),
    [
        (all_nodes(), "all-nodes", {Category.NODE}),
        (all_pods(), "all-pods", {Category.ENDPOINT}),
        (cidrs("10.0.0.0/8"), "cidr", {Category.CIDR}),
        (component("controller", "cert-manager"), "component", {Category.ENDPOINT}),
        (control_plane(), "control-plane", {Category.NODE}),
        (dns("example.com"), "dns", {Category.FQDNS}),
        (gateway("public"), "gateway", {Category.ENDPOINT}),
        (health(), "health", {Category.ENDPOINT}),
        (host(), "host", {Category.ENTITY, Category.NODE}),
        (icmpv4(8), "icmpv4", {Category.ICMP}),
        (icmpv6(128), "icmpv6", {Category.ICMP}),
        (kube_dns(), "kube-dns", {Category.ENDPOINT}),
        (pod("api", "ns"), "pod", {Category.ENDPOINT}),
        (tcp(443), "tcp", {Category.PORT}),
        (udp(53), "udp", {Category.PORT}),
    ],
)
def test_variant_tags_and_categories(selector, type_, categories):
    assert selector.type == type_
    assert selector.categories == frozenset(categories)


def test_host_is_entity_and_node():
    assert is_entity(host())
    assert is_node(host())
    assert not is_endpoint(host())


def test_has_category():
    assert has_category(pod("api", "ns"), Category.ENDPOINT)
    assert not has_category(pod("api", "ns"), Category.NODE)


def test_selectors_are_frozen():
    selector = pod("api", "ns")
    with pytest.raises(dataclasses.FrozenInstanceError):
        selector.name = "other"  # type: ignore[misc]


def test_selectors_compare_by_value():
    assert pod("api", "ns") == pod("api", "ns")
    assert tcp(80, (1000, 2000)) == tcp(80, [1000, 2000])


def test_empty_cidr_list_rejected():
    with pytest.raises(SelectorValidationError, match="empty CIDR list"):
        cidrs()


def test_cidr_alias():
    assert cidr("10.0.0.0/8") == cidrs("10.0.0.0/8")


def test_invalid_cidr_rejected():
    with pytest.raises(SelectorValidationError, match="invalid CIDR"):
        cidrs("10.0.0.0/33")


def test_cidr_keeps_ranges_in_order():
    selector = cidrs("192.168.16.0/24", "192.168.17.0/24")
    assert selector.ranges == ("192.168.16.0/24", "192.168.17.0/24")


def test_empty_dns_list_rejected():
    with pytest.raises(SelectorValidationError):
        dns()


def test_port_ranges_normalized_to_tuples():
    selector = tcp(22, [8000, 8100])
    assert selector.ports == (22, (8000, 8100))


def test_empty_port_list_allowed():
    assert tcp().ports == ()


@pytest.mark.parametrize("bad", [0, 65536, -1, True, "80", (100, 10), (1, 2, 3)])
def test_invalid_ports_rejected(bad):
    with pytest.raises(SelectorValidationError):
        tcp(bad)


def test_invalid_icmp_type_rejected():
    with pytest.raises(SelectorValidationError, match="ICMP"):
        icmpv4(256)


def test_variant_predicates():
    assert is_gateway(gateway("public"))
    assert not is_gateway(pod("public", "envoy-gateway"))
    assert is_kube_dns(kube_dns())
    assert not is_kube_dns(component("kube-dns", "kube-system"))


def test_as_target_wraps_plain_selector():
    t = as_target(pod("api", "ns"))
    assert isinstance(t, Target)
    assert t.selector == pod("api", "ns")
    assert as_target(t) is t


def test_target_named_ports():
    t = target(pod("grafana", "grafana"), http=tcp(3000), dns=[udp(53), tcp(53)])
    assert t.port_labels == ("http", "dns")
    assert t.resolve_port("http") == (tcp(3000),)
    assert t.resolve_port("dns") == (udp(53), tcp(53))


def test_target_unknown_port_label():
    t = target(pod("grafana", "grafana"), http=tcp(3000))
    with pytest.raises(SelectorValidationError, match="metrics"):
        t.resolve_port("metrics")


def test_target_rejects_non_protocol_ports():
    with pytest.raises(SelectorValidationError, match="http"):
        target(pod("grafana", "grafana"), http=pod("other", "ns"))


@pytest.mark.parametrize("bad", [3000, "tcp", [pod("other", "ns")]])
def test_target_rejects_malformed_port_values(bad):
    with pytest.raises(SelectorValidationError, match="metrics"):
        target(pod("grafana", "grafana"), metrics=bad)


def test_as_node_pins_anchor_role():
    t = as_node(host())
    assert t.anchor_as is Category.NODE
    assert t.anchor_categories == frozenset({Category.NODE})
    assert t.selector.categories == frozenset({Category.ENTITY, Category.NODE})


def test_as_node_keeps_target_options():
    t = as_node(target(control_plane(), match_expressions=True, api=tcp(6443)))
    assert t.match_expressions
    assert t.port_labels == ("api",)


def test_pin_rejects_missing_category():
    with pytest.raises(SelectorValidationError):
        as_endpoint(host())


def test_unhandled_variant_raises():
    with pytest.raises(UnhandledSelectorVariantError, match="sctp"):
        unhandled_variant("sctp")  # type: ignore[arg-type]


def test_unhandled_variant_is_not_a_validation_error():
    with pytest.raises(UnhandledSelectorVariantError) as excinfo:
        unhandled_variant("sctp")  # type: ignore[arg-type]
    assert isinstance(excinfo.value, TypeError)
    assert not isinstance(excinfo.value, ValueError)
