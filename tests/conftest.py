# FILE: tests/conftest.py
"""
Pytest configuration for the converter test suite.

Configures:
- pytest-asyncio for async test support
- shared fakes (see tests/fakes.py)
"""
import sys
from pathlib import Path

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import pytest

pytest_plugins = ["pytest_asyncio"]


@pytest.fixture
def audit():
    from fakes import RecordingAuditSink
    return RecordingAuditSink()


@pytest.fixture
def validator():
    from fakes import MarkerValidationOracle
    return MarkerValidationOracle()
