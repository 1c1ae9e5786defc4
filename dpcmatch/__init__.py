"""
DPCMatch - Direct Primary Care Provider Reconciliation Engine

Decides whether provider records scraped from independent directories
describe the same physical practice, and which record should donate a
missing monthly membership fee to the other.
"""

__version__ = "1.0.0"
__author__ = "DPCMatch Team"
