"""
MedRemind Test Suite
====================

This package contains all tests for the MedRemind reminder scheduling backend.

Test Structure:
- test_tools/: Recurrence, clock and notification tool tests
- test_services/: Store and adherence service tests
- test_actions/: Job queue, reminder engine and escalation tests
- test_api/: API endpoint tests for FastAPI routes
- conftest.py: Shared pytest fixtures

Running Tests:
    # Run all tests
    pytest

    # Run specific test module
    pytest tests/test_actions/

    # Run only marked tests
    pytest -m "unit"
    pytest -m "api"
"""

# Test configuration
TEST_DATABASE_URL = "sqlite:///:memory:"

__all__ = [
    "TEST_DATABASE_URL",
]
