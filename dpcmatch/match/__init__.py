"""
Matching engine for DPCMatch.

Implements Jaro-Winkler name similarity, the tiered match classifier and
the reconciliation driver that turns verdicts into fee propagations.
"""
