"""Conversational assistant for a CRM: contacts, calendar events, alerts and settings."""

__version__ = "1.0.0"
