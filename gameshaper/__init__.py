"""GameShaper: LLM-assisted co-authoring of graph-structured game worlds."""

__version__ = "0.1.0"
