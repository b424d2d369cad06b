"""
Tests package - Test suite for keycloak-config-sync.

Contains:
- unit/: Unit tests for individual components
- documents.py: Import documents shared between test modules
- fakes.py: In-memory Keycloak Admin API used by orchestrator tests
"""
