"""MCP server for the sticky notes engine."""
