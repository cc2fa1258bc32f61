"""FlowDrop pipeline job generation and dependency-driven scheduling."""

__version__ = "0.1.0"
