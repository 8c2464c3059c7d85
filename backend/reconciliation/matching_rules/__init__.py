"""
Matching Rules Module
"""

from .member_rules import MemberMatchingRules, ContactMatch, MatchingResult, build_member_rules

__all__ = ["MemberMatchingRules", "ContactMatch", "MatchingResult", "build_member_rules"]
