"""
Questline Test Suite
====================

Test Organization
-----------------
- tests/unit/          : Fast unit tests with mocks and pure functions
- tests/integration/   : Services against a real database (aiosqlite, or a
                         PostgreSQL testcontainer for locking tests)
- tests/fixtures/      : Test data factories and fakes

Testing Philosophy
------------------
- Unit tests: Fast, isolated, test business logic
- Integration tests: Drive whole units of work and check what was committed
  and published
- Use pytest markers to categorize and selectively run tests
- Follow AAA pattern: Arrange, Act, Assert
"""
