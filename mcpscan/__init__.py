"""
mcp-scan - distributed static-analysis orchestration.
Coordinator (MCP) service, scanning agent runtime and capability scanners.
"""

__version__ = "1.0.0"
