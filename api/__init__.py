"""
Operix - HTTP Layer

Request/response types, router, asyncio HTTP server, built-in middleware
and routes.
"""
