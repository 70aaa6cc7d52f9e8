"""Service layer: sessions and authentication."""
