"""
Web integration for the ACL engine.
"""

from .guard import ACLGuard, CallbackRegistry, scope_from_path, user_from_state

__all__ = ["ACLGuard", "CallbackRegistry", "scope_from_path", "user_from_state"]
