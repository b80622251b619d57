"""
Authopsy - Role-Based Access Control Scanner

Queries an API as administrator, regular user and anonymous caller and
compares the responses to find endpoints that leak admin-only data.
"""

__version__ = "1.0.0"
__author__ = "Security Researcher"
