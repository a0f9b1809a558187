"""
Teams MCP Server - Entry Point
==============================
Thin wrapper that imports and runs the MCP server from the teams_mcp package.
See teams_mcp/cli.py for the command line and teams_mcp/http_server.py for HTTP mode.

Usage:
    python teams_mcp_server.py          # stdio transport (for desktop clients)
    python teams_mcp_server.py --http   # HTTP transport (for remote clients)
"""

from teams_mcp.cli import main

if __name__ == "__main__":
    main()
