"""
Identity mapping helpers.
"""

from .mapper import ExternalIdentity, extract_user_attributes, select_username, to_external_identity

__all__ = ["ExternalIdentity", "extract_user_attributes", "select_username", "to_external_identity"]
