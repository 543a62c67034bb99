"""Remote gateway: console client and per-platform session registry."""

from difyascode.sync_engine.gateway.base import RemoteGateway
from difyascode.sync_engine.gateway.console import DifyConsoleClient
from difyascode.sync_engine.gateway.registry import GatewayFactory, GatewaySessions

__all__ = [
    "DifyConsoleClient",
    "GatewayFactory",
    "GatewaySessions",
    "RemoteGateway",
]
