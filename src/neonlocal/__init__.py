"""
neonlocal - Neon Local proxy container manager
"""

__version__ = "0.1.0"

from .core import ContainerLifecycleManager
from .errors import ProxyError

__all__ = ["ContainerLifecycleManager", "ProxyError"]
