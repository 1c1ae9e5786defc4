"""
Data normalization modules for DPCMatch.

Derives canonical comparison keys from provider names, practice names,
websites and street addresses.
"""
