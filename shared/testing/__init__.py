"""Test-suite helpers shared by ``tests/conftest.py``."""

from shared.testing.environment import apply_required_test_environment

__all__ = ["apply_required_test_environment"]
