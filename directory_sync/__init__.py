"""
Directory Group Sync - Mirror directory-service groups into the groups registry.

This package fetches groups and their members from an identity directory
(Google Workspace or LDAP) and creates or renames the matching groups in the
registry API so both sides stay in line.
"""

__version__ = "1.0.0"
__author__ = "Directory Sync Team"
