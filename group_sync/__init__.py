"""
AD Cloud Group Sync - Reconcile on-premises directory group membership into cloud groups.

This package reads the enabled members of Active Directory / LDAP groups and
makes the mapped Microsoft 365 security, unified or Exchange distribution
groups match them, one pass per run.
"""

__version__ = "1.0.0"
__author__ = "Group Sync Team"
