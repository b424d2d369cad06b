"""
Models package - Pydantic models for type-safe resource handling.

Defines data models for:
- Keycloak Admin API representations
- Realm import documents
"""
