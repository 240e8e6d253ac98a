"""
Marketplace Module

Talks to the requestor daemon that negotiates with remote providers.
"""

from .client import MarketplaceClient, RpcError
from .descriptor import TaskDescriptorBuilder
from .settings import MarketplaceSettings

__all__ = ["MarketplaceClient", "RpcError", "TaskDescriptorBuilder", "MarketplaceSettings"]
