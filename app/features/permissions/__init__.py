"""
Permission management feature module.

Implements organization-scoped Role-Based Access Control: principals (users
and teams), roles, permission grants with breadth and object-type narrowing,
scoped assignments and the authorization engine that combines them.
"""
