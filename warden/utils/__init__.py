"""Shared helpers for Warden."""
