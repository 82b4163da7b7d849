"""Reconciliation engine: synthesis, diff/apply, node rollouts and status."""
