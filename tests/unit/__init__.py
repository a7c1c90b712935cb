"""Unit tests: pure logic and mocked collaborators."""
