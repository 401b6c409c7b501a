"""
Utility functions and helpers.

This package contains reusable utilities shared by the provisioning, backup
and dashboard code.

Modules:
- files: small filesystem helpers
- hashing: checksums for backup archives
- logging: logging configuration
- progress: rich status output
- redact: masking of secrets in command lines
- shell: external command runner with dry-run support
- templates: Jinja2 template loading
"""
