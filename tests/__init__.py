# Tests Package
"""
Test suite for the network agents orchestration core.

- unit/: Component-level tests
- integration/: Orchestrator tick flow tests
"""
