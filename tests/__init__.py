"""
Tests Package

Unit tests, integration tests, and test fixtures for Bloomberg Data Crawler.

Structure:
    - Unit tests: Test individual components in isolation
    - Integration tests: Test component interactions
    - fixtures/: Shared test data and mock responses
"""

__all__ = []

# Test configuration
TEST_DATA_DIR = "fixtures"
MOCK_RESPONSES_DIR = "fixtures/mock_responses"
