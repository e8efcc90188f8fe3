"""Pipeline components.

This package contains the cost estimator and the per-function fan-out that
joins metrics, cold starts and memory allocation into ordered results.
"""
