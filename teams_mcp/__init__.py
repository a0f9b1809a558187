"""Microsoft Teams MCP server backed by the Microsoft Graph API."""

__version__ = "0.3.3"
SERVER_NAME = "microsoft-teams-mcp"
