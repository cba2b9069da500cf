from .flow_store import FlowStore

__all__ = ["FlowStore"]
