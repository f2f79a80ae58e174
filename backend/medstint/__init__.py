"""MedStint onboarding service."""

__version__ = "0.1.0"
