"""
Invitation feature module.

Invitations move pending -> accepted | revoked; acceptance provisions the
membership and role assignment in one transaction.
"""
