from .admin import AdminGate, AuthContext

__all__ = ["AdminGate", "AuthContext"]
