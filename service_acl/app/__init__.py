"""
Scoped ACL application code.
"""
