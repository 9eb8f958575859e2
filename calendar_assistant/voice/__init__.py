"""Telephony front end (Vonage Voice IVR)."""
