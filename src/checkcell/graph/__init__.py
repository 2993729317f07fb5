"""Dependency graph between raw inputs and computed outputs."""

from .builder import DependencyGraph
from .models import Node, NodeKind, Reachability

__all__ = ["DependencyGraph", "Node", "NodeKind", "Reachability"]
