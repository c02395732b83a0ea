"""Orchestration core: probes, polling, plans, checks and reports."""
