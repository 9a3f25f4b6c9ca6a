"""
Root conftest.py - Global configuration for all test layers.

Test Layers:
    - component/  : Component tests (in-memory repositories, mocked collaborators)
    - unit/       : Unit tests (pure functions, no I/O)
"""
import os
import sys

import pytest

# Set testing environment BEFORE any service imports
os.environ.setdefault("ENV", "testing")
os.environ.setdefault("CONSUL_ENABLED", "false")

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from tests.contracts.communication.data_contract import CommunicationTestDataFactory


@pytest.fixture
def factory() -> CommunicationTestDataFactory:
    """Test data factory"""
    return CommunicationTestDataFactory()
