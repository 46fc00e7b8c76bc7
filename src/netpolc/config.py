"""Global configuration — XDG paths, env vars, defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

ROUTER_SYNC_ANNOTATION = (
    "router-policy-sync.homelab-helper.benfiola.com/sync-with-router"
)

_FALSY = {"0", "false", "no", "off"}


def _default_config_dir() -> Path:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "netpolc"
    return Path.home() / ".config" / "netpolc"


@dataclass
class CompilerConfig:
    """Compiler-wide configuration."""

    config_dir: Path = field(default_factory=_default_config_dir)
    catalog_dirs: list[Path] = field(default_factory=list)
    api_version: str = "cilium.io/v2"
    kind: str = "CiliumClusterwideNetworkPolicy"
    router_sync_annotation: str = ROUTER_SYNC_ANNOTATION
    gateway_namespace: str = "envoy-gateway"
    dns_wildcard: bool = True

    @classmethod
    def load(cls) -> CompilerConfig:
        """Load config from environment variables with XDG defaults."""
        config = cls()

        env_api_version = os.environ.get("NETPOLC_API_VERSION")
        if env_api_version:
            config.api_version = env_api_version

        env_kind = os.environ.get("NETPOLC_KIND")
        if env_kind:
            config.kind = env_kind

        env_annotation = os.environ.get("NETPOLC_ROUTER_SYNC_ANNOTATION")
        if env_annotation:
            config.router_sync_annotation = env_annotation

        env_gateway_ns = os.environ.get("NETPOLC_GATEWAY_NAMESPACE")
        if env_gateway_ns:
            config.gateway_namespace = env_gateway_ns

        env_dns = os.environ.get("NETPOLC_DNS_WILDCARD")
        if env_dns:
            config.dns_wildcard = env_dns.strip().lower() not in _FALSY

        # Add config dir's catalogs/ subdirectory if it exists
        catalogs_dir = config.config_dir / "catalogs"
        if catalogs_dir.is_dir():
            config.catalog_dirs.append(catalogs_dir)

        return config
