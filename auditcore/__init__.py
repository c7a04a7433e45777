"""Audit logging core for the voice-assistant backend."""
