"""Integrations with external SDKs."""
