from omnidrop.dependencies.auth_deps import authenticate_request, require_scopes

__all__ = ["authenticate_request", "require_scopes"]
