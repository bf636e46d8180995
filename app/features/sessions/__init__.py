"""
Session lifecycle feature module.

Tracks user inactivity and forces logout once the configured timeout
elapses, warning the user five minutes beforehand.
"""
