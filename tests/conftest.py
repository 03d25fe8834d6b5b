"""
Pytest configuration and fixtures
"""

import pytest
import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))
sys.path.insert(0, str(PROJECT_ROOT / "tests"))


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, local, no network)")


@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch):
    """Setup test environment variables."""
    monkeypatch.setenv('TUTOR_API_BASE_URL', 'http://tutor.test')
    monkeypatch.setenv('TUTOR_POLL_INTERVAL_SECONDS', '0')
    monkeypatch.setenv('TUTOR_ADVANCE_DELAY_SECONDS', '0')
    monkeypatch.delenv('TUTOR_API_TOKEN', raising=False)
    monkeypatch.delenv('TUTOR_HTTP_TIMEOUT_SECONDS', raising=False)
    monkeypatch.delenv('TUTOR_POLL_SOFT_CEILING_SECONDS', raising=False)
    monkeypatch.delenv('TUTOR_POLL_HARD_LIMIT_SECONDS', raising=False)
    monkeypatch.delenv('TUTOR_LOG_LEVEL', raising=False)
