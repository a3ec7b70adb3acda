"""Persistence helpers shared by repositories."""
