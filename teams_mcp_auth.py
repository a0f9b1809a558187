"""
Teams MCP - Authentication Setup
================================
Run this script once to sign the MCP server in to Microsoft Graph with the
device code flow. Tokens are stored in your home directory.

Usage:
    python teams_mcp_auth.py              # sign in
    python teams_mcp_auth.py check        # show stored credential
    python teams_mcp_auth.py logout       # remove stored credential
"""

import sys

from teams_mcp.cli import main

if __name__ == "__main__":
    main(sys.argv[1:] or ["authenticate"])
