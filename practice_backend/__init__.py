"""Practice scheduler backend."""
