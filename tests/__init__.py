"""
Test Suite

Contains unit and integration tests for the kline alert core.

Structure:
- tests/unit/: Tests for individual components (config, bus, ingestor, evaluator)
  plus end-to-end flows driven by in-memory websocket doubles

Uses pytest with pytest-asyncio for testing async functionality.
"""
