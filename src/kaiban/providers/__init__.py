"""Adapters for the external AI command-line tools that execute tasks."""
