"""
Operix - Property-Based Testing Suite

Hypothesis invariants for routing and module ordering.
"""
