"""Repositories for database access."""

from purehealth_auth.repositories.credential import CredentialRepository
from purehealth_auth.repositories.user import UserRepository

__all__ = ["CredentialRepository", "UserRepository"]
