# FILE: converter/__init__.py
"""
Solidity -> CashScript conversion service.

Subpackages:
    pipeline - phase orchestrator, repair loop, merge, wire events
    oracles  - completion (Anthropic) and validation (cashc) oracles
    api      - FastAPI router, request schemas, admission control
    client   - SSE parser, streaming client, client-side conversion store
    audit    - SQLAlchemy audit records for offline analysis
"""

__version__ = "0.4.0"
