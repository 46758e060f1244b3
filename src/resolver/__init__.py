"""Dependency resolution: candidates, tie-break policy and the backtracking engine."""
