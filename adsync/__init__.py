"""
AD Group Sync - Add every user account of an Active Directory organizational
unit to a security group.

This package lists the accounts of one OU, lists the group's current members
and adds the missing accounts as members. Members are never removed.
"""

__version__ = "1.0.0"
__author__ = "AD Group Sync Team"
