# FILE: converter/client/__init__.py
"""Client side of the conversion stream: SSE parser, state store, httpx client."""
