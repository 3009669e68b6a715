"""Models for the Purehealth authentication service."""
