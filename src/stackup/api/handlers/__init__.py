"""Status API endpoint handlers."""
