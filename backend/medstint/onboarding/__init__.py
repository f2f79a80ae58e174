"""Onboarding workflow engine: catalog, validation, store, engine, finalizer."""
