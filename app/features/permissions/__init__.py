"""
Permission management feature module.

Role-based access control over a fixed module/action matrix, with
per-user and administrator-wide per-role overrides that replace the
matrix entry of a module.
"""
