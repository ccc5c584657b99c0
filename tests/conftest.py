"""
Shared pytest configuration.

This file ensures the project root is on sys.path so that
`import chat_gateway` works consistently in all tests.
"""

import sys
from pathlib import Path

import pytest

# Ensure project root is importable for test modules.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from chat_gateway.settings import Settings  # noqa: E402


@pytest.fixture
def cfg() -> Settings:
    """Isolated settings; never reads the developer's real provider key."""
    return Settings(
        api_key="sk-test",  # pragma: allowlist secret
        base_url="https://mock.local/v1/",
        organization=None,
        default_model="primary-model",
        fallback_model="fallback-model",
        fallback_enabled=True,
        timeout_ms=2000,
        max_output_tokens=512,
        default_temperature=0.7,
        context_max_messages=12,
    )
