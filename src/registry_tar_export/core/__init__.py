"""Registry HTTP plumbing: sessions, authentication, retry and shared types."""
