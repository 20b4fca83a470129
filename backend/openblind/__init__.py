"""
OpenBlind Backend — Application Package
=========================================

Backend for the OpenBlind accessibility app: accounts, user profiles whose
personal fields are encrypted at rest, and the operator jobs that migrate
and verify that encryption.

Layers:

    ┌─────────────────────────────────────┐
    │        Routes (API Layer)           │  ← HTTP concerns, admin key guard
    ├─────────────────────────────────────┤
    │        Services                     │  ← cipher, codec, profile/account
    │                                     │    logic, batch jobs
    ├─────────────────────────────────────┤
    │        Repositories                 │  ← raw stored values, CAS writes
    ├─────────────────────────────────────┤
    │        Models & Schemas             │  ← SQLAlchemy ORM + Pydantic
    └─────────────────────────────────────┘

Plaintext personal data only exists above the repository layer.
"""

__version__ = "1.0.0"
