"""Small shared helpers for blueprints and services."""
