"""Event handlers for the Eligibility Service."""
