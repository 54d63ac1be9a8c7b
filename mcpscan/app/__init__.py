"""Coordinator (MCP) service: agents, scan requests and scan results."""
