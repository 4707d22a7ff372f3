"""Identity directory integration (Keycloak Admin API) and resilient sync."""
