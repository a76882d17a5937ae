"""Runtime configuration for Warden."""
