"""stackup - bring up interdependent services and verify they are ready."""

__version__ = "1.0.0"
