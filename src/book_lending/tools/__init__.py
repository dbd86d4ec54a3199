"""
MCP tools for the book lending service.

Each tool is a dictionary with name, description, input schema and an async
handler; the server registers every entry of ``all_tools``.
"""

from .transactions import request_book, resolve_request

all_tools = [
    request_book,
    resolve_request,
]

__all__ = [
    "all_tools",
    "request_book",
    "resolve_request",
]
