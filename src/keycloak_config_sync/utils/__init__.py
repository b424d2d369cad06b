"""
Utils package - helper modules for keycloak-config-sync.

Contains helper modules for:
- Keycloak Admin API interactions
- Loading import documents from disk
- Deep patch/compare of representations
"""
