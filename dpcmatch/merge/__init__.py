"""
Fee propagation persistence for DPCMatch.
"""
