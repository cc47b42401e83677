"""Node records and the file-backed node registry."""

from nodes.models import Identity, Node
from nodes.registry import NodeGroup, NodeRegistry

__all__ = ['Identity', 'Node', 'NodeGroup', 'NodeRegistry']
