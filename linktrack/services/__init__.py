"""Services package."""
from linktrack.services.authorization import ApiKeyAuthorizer, StaticAuthorizer
from linktrack.services.encryption import encryption_service, generate_fernet_key

__all__ = [
    "ApiKeyAuthorizer",
    "StaticAuthorizer",
    "encryption_service",
    "generate_fernet_key",
]
