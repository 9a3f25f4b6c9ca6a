"""
Component Test Layer Configuration

Structure:
    tests/component/
    └── communication/   Services wired to in-memory mocks (see its conftest.py)

Usage:
    pytest tests/component -v
"""
import os
import sys


# Set testing environment BEFORE any imports
os.environ["ENV"] = "testing"
os.environ["ENVIRONMENT"] = "testing"
os.environ["CONSUL_ENABLED"] = "false"

# Add project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))
