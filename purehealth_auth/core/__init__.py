"""Core infrastructure: database, ephemeral storage, security, auth dependencies."""
