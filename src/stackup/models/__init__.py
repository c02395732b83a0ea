"""Data models for endpoints, attempts, results and reports."""
