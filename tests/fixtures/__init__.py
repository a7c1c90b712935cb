"""Test data factories and fakes shared by the unit and integration suites."""
