"""
Reconciliation pipeline and command-line entry point for DPCMatch.
"""
