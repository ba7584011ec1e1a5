"""Resilient multi-provider model invocation and a four-phase deep-research pipeline."""

__version__ = "0.1.0"
