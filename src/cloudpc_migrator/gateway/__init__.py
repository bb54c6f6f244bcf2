"""
Remote resource gateways.

- ResourceGateway: interface consumed by the stage engine
- InMemoryGateway: scriptable fake for tests and dry runs
- GraphGateway: Microsoft Graph implementation
"""

from ..resources import MembershipResult
from .base import ResourceGateway
from .graph import GraphGateway
from .memory import InMemoryGateway

__all__ = [
    "MembershipResult",
    "ResourceGateway",
    "InMemoryGateway",
    "GraphGateway",
]
