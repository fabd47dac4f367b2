"""
WEBCORE - Property-Based Testing Suite

Property-based testing using Hypothesis to check the library registry
invariants over arbitrary load / unload / shutdown sequences.
"""
