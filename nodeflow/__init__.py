"""Workflow execution engine for graphs of text, media and LLM nodes."""

__version__ = "0.1.0"
