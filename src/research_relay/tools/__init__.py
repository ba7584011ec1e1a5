"""FastMCP sub-servers exposing the invocation layer and the research pipeline."""
