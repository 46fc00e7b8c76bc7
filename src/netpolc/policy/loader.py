"""Load policy catalogs from YAML files and replay them through the builder."""

from __future__ import annotations

import importlib.resources
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml

from netpolc.config import CompilerConfig
from netpolc.errors import SelectorValidationError
from netpolc.policy.builder import Catalog, ProtocolArg
from netpolc.policy.selectors import (
    PeerSelector,
    ProtocolSelector,
    Target,
    all_nodes,
    all_pods,
    as_endpoint,
    as_node,
    cidrs,
    component,
    control_plane,
    dns,
    gateway,
    health,
    host,
    icmpv4,
    icmpv6,
    is_icmp,
    is_port,
    kube_dns,
    pod,
    tcp,
    udp,
)

logger = logging.getLogger(__name__)

_PRESET_PREFIX = "preset:"

_CONSTRUCTORS: dict[str, Callable[..., Any]] = {
    "all-nodes": all_nodes,
    "all-pods": all_pods,
    "cidr": cidrs,
    "cidrs": cidrs,
    "component": component,
    "control-plane": control_plane,
    "dns": dns,
    "gateway": gateway,
    "health": health,
    "host": host,
    "icmpv4": icmpv4,
    "icmpv6": icmpv6,
    "kube-dns": kube_dns,
    "pod": pod,
    "tcp": tcp,
    "udp": udp,
}

_ANCHOR_PINS: dict[str, Callable[[PeerSelector | Target], Target]] = {
    "node": as_node,
    "endpoint": as_endpoint,
}

_TARGET_KEYS = {"ports", "match_expressions", "anchor_as"}


def load_catalog(
    path: str | Path,
    config: CompilerConfig | None = None,
) -> Catalog:
    """Load a catalog from a YAML file path."""
    path = Path(path)
    data = _parse_yaml(path.read_text(encoding="utf-8"), source=str(path))
    catalog = Catalog(name=data.get("name", path.stem), config=config)
    _build_catalog(
        data,
        catalog,
        base_dir=path.parent,
        key=str(path.resolve()),
        active=set(),
        loaded=set(),
    )
    return catalog


def load_catalog_from_string(
    text: str,
    config: CompilerConfig | None = None,
    base_dir: Path | None = None,
) -> Catalog:
    """Parse a YAML string into a Catalog, resolving includes."""
    data = _parse_yaml(text, source="<string>")
    catalog = Catalog(name=data.get("name", "unnamed"), config=config)
    _build_catalog(
        data,
        catalog,
        base_dir=base_dir or Path.cwd(),
        key="<string>",
        active=set(),
        loaded=set(),
    )
    return catalog


def _parse_yaml(text: str, source: str) -> dict:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {source}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Catalog YAML must be a mapping: {source}")
    return data


def _build_catalog(
    data: dict,
    catalog: Catalog,
    base_dir: Path,
    key: str,
    active: set[str],
    loaded: set[str],
) -> None:
    # active: includes on the current chain; loaded: includes already applied
    if key in active:
        raise ValueError(f"Circular catalog include detected: {key}")
    if key in loaded:
        logger.debug("Catalog %s already included, skipping", key)
        return
    active.add(key)

    name = data.get("name", "unnamed")
    include_list = data.get("include", []) or []
    if isinstance(include_list, str):
        include_list = [include_list]
    if not isinstance(include_list, list):
        raise ValueError(f"Catalog {name}: 'include' must be a list")

    # Included policies come first so own policies read as overrides in output order
    for ref in include_list:
        if not isinstance(ref, str):
            raise ValueError(
                f"Catalog {name}: include entries must be strings: {ref!r}"
            )
        _load_ref(ref, catalog, base_dir, active, loaded)

    policies = data.get("policies", []) or []
    if not isinstance(policies, list):
        raise ValueError(f"Catalog {name}: 'policies' must be a list")
    for entry in policies:
        _apply_policy(entry, catalog)

    active.discard(key)
    loaded.add(key)


def _apply_policy(entry: Any, catalog: Catalog) -> None:
    if not isinstance(entry, dict) or "name" not in entry:
        raise ValueError(f"Policy entry must be a mapping with a name: {entry!r}")
    name = str(entry["name"])
    builder = catalog.policy(name)

    if "between" in entry:
        between = entry["between"]
        if not isinstance(between, dict):
            raise ValueError(f"Policy {name}: 'between' must be a mapping")
        builder.allow_between(
            parse_target(between.get("source")),
            parse_target(between.get("destination")),
            *parse_protocols(entry.get("protocols", [])),
        )
        return

    if "target" not in entry:
        raise ValueError(f"Policy {name} needs either 'between' or 'target'")

    targeted = builder.targets(parse_target(entry["target"]))
    for rule in _rule_list(entry, "egress"):
        if not isinstance(rule, dict):
            raise ValueError(f"Policy {name}: egress rules must be mappings")
        targeted.allow_egress_to(
            parse_target(rule.get("to")),
            *parse_protocols(rule.get("protocols", [])),
        )
    for rule in _rule_list(entry, "ingress"):
        if not isinstance(rule, dict):
            raise ValueError(f"Policy {name}: ingress rules must be mappings")
        targeted.allow_ingress_from(
            parse_target(rule.get("from")),
            *parse_protocols(rule.get("protocols", [])),
        )
    if entry.get("sync_with_router", False):
        targeted.sync_with_router()


def _rule_list(entry: dict, direction: str) -> list:
    rules = entry.get(direction, []) or []
    if not isinstance(rules, list):
        raise ValueError(f"Policy {entry['name']}: '{direction}' must be a list")
    return rules


def parse_selector(data: Any) -> Any:
    """Turn ``"host"`` or ``{"pod": ["api", "ns"]}`` into a selector."""
    if isinstance(data, str):
        kind, args = data, None
    elif isinstance(data, dict) and len(data) == 1:
        kind, args = next(iter(data.items()))
    else:
        raise SelectorValidationError(f"invalid selector: {data!r}")

    constructor = _CONSTRUCTORS.get(kind)
    if constructor is None:
        raise SelectorValidationError(f"unknown selector type: {kind!r}")

    try:
        if args is None:
            return constructor()
        if isinstance(args, list):
            return constructor(*args)
        if isinstance(args, dict):
            return constructor(**args)
        return constructor(args)
    except TypeError as exc:
        raise SelectorValidationError(f"invalid arguments for {kind}: {exc}") from exc


def parse_target(data: Any) -> Target:
    """Parse a selector plus the optional ``ports``/``match_expressions``/``anchor_as`` keys."""
    if data is None:
        raise SelectorValidationError("missing selector")
    if not isinstance(data, dict):
        return Target(selector=parse_selector(data))

    selector_part = {k: v for k, v in data.items() if k not in _TARGET_KEYS}
    selector = parse_selector(selector_part)

    ports: list[tuple[str, tuple[ProtocolSelector, ...]]] = []
    port_map = data.get("ports") or {}
    if not isinstance(port_map, dict):
        raise SelectorValidationError(
            f"'ports' must map labels to protocols, got {port_map!r}"
        )
    for label, spec in port_map.items():
        specs = spec if isinstance(spec, list) else [spec]
        ports.append((str(label), tuple(_parse_protocol(s) for s in specs)))

    result = Target(
        selector=selector,
        ports=tuple(ports),
        match_expressions=bool(data.get("match_expressions", False)),
    )

    anchor_as = data.get("anchor_as")
    if anchor_as is not None:
        pin = _ANCHOR_PINS.get(anchor_as)
        if pin is None:
            raise SelectorValidationError(f"invalid anchor_as: {anchor_as!r}")
        result = pin(result)
    return result


def parse_protocols(data: Any) -> list[ProtocolArg]:
    """Parse a protocol list; strings are kept as port labels."""
    if data is None:
        return []
    if not isinstance(data, list):
        data = [data]
    protocols: list[ProtocolArg] = []
    for item in data:
        if isinstance(item, str) and item not in _CONSTRUCTORS:
            protocols.append(item)
        else:
            protocols.append(_parse_protocol(item))
    return protocols


def _parse_protocol(data: Any) -> ProtocolSelector:
    selector = parse_selector(data)
    if not (is_port(selector) or is_icmp(selector)):
        raise SelectorValidationError(f"not a protocol selector: {data!r}")
    result: ProtocolSelector = selector
    return result


def _load_ref(
    ref: str,
    catalog: Catalog,
    base_dir: Path,
    active: set[str],
    loaded: set[str],
) -> None:
    if ref.startswith(_PRESET_PREFIX):
        preset_name = ref[len(_PRESET_PREFIX) :]
        _load_preset(preset_name, catalog, active, loaded)
        return
    # Treat as file path
    path = _find_include(ref, base_dir, catalog.config)
    data = _parse_yaml(path.read_text(encoding="utf-8"), source=str(path))
    _build_catalog(
        data,
        catalog,
        base_dir=path.parent,
        key=str(path.resolve()),
        active=active,
        loaded=loaded,
    )


def _find_include(ref: str, base_dir: Path, config: CompilerConfig) -> Path:
    path = Path(ref)
    if path.is_absolute():
        return path
    candidates = [base_dir / path] + [d / path for d in config.catalog_dirs]
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    raise ValueError(f"Included catalog not found: {ref}")


def _load_preset(
    name: str, catalog: Catalog, active: set[str], loaded: set[str]
) -> None:
    filename = f"{name}.yaml"
    pkg = importlib.resources.files("netpolc.policy.presets")
    resource = pkg.joinpath(filename)
    if not resource.is_file():
        raise ValueError(f"Unknown preset: {name}")
    text = resource.read_text(encoding="utf-8")
    _build_catalog(
        _parse_yaml(text, source=f"{_PRESET_PREFIX}{name}"),
        catalog,
        base_dir=Path.cwd(),
        key=f"{_PRESET_PREFIX}{name}",
        active=active,
        loaded=loaded,
    )
