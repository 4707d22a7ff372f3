"""Core Business Logic Module

Role management engine, independent of HTTP frameworks.

Architecture:
    - Pure Python (no Flask dependencies in core logic)
    - Testable without HTTP mocking
    - Reusable across interfaces (HTTP API, operator CLI)

Module Structure:
    - roles.py        : Role catalogue and privilege ranks
    - models.py       : Accounts, requests, results, audit records
    - policy.py       : Pure role-assignment policy
    - store.py        : Account store (in-memory and SQLAlchemy)
    - orchestrator.py : Role transitions (policy, CAS write, directory sync, audit)
    - invitations.py  : New-user invitations
    - audit.py        : Signed JSONL audit trail
    - health.py       : Directory and secret store probes
    - errors.py       : Error taxonomy with HTTP statuses

Import explicitly when needed:
    from admin_console.core.policy import evaluate
    from admin_console.core.orchestrator import RoleTransitionOrchestrator
"""
