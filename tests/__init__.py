"""
EXStreamTV Test Suite

Comprehensive tests for the EXStreamTV IPTV streaming platform.

Test Categories:
- unit/: Fast, isolated unit tests
- integration/: Tests with database and service interactions
- e2e/: Full end-to-end workflow tests
- performance/: Performance and load tests
- fixtures/: Shared test data and mocks
"""
