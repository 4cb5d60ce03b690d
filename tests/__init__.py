"""
Triviaboard Test Suite
======================

Test Organization
-----------------
- tests/unit/          : Fast tests without external infrastructure
- tests/unit/domain/   : Domain value object tests
- tests/integration/   : SQL feed tests against in-memory SQLite

Markers: ``unit``, ``domain``, ``integration``.
"""
