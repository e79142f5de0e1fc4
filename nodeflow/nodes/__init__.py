from .base import NodeContext, NodeOutcome, NodeRegistry, NodeSpec
from .builtin import register_builtin_nodes

__all__ = ["NodeContext", "NodeOutcome", "NodeRegistry", "NodeSpec", "register_builtin_nodes"]
