from omnidrop.models.oauth_client import OAuthClient, RegistryDocument

__all__ = ["OAuthClient", "RegistryDocument"]
