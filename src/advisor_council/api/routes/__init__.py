"""HTTP routes: sessions and health."""
