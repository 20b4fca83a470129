# Repositories package init
"""
OpenBlind Backend — Record Store Adapters
==========================================

What:  Thin async persistence adapters over SQLAlchemy sessions.
How:   Each repository wraps one AsyncSession and exposes load / get / save /
       update_fields / count / delete. Values are stored and returned RAW:
       no repository encrypts or decrypts anything.

Inventory:
    - ProfileRepository: user_profiles (sensitive profile fields)
    - AccountRepository: accounts (encrypted email, credentials, role)

Store errors (connectivity, constraint violations) propagate unchanged to the
caller.
"""
