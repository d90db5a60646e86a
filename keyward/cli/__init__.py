"""keyward management CLI."""
