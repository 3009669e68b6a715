"""API request and response contracts (Pydantic)."""
