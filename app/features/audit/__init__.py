"""
Audit trail feature module.

Records login attempts, logouts, session timeouts and administrative
actions. Writes are best-effort and never block the caller.
"""
