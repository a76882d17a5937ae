"""Command line tooling for Warden snapshots."""
