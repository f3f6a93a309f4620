"""Convergence engine."""
