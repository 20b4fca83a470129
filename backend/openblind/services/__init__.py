# Services package init
"""
OpenBlind Backend — Services Layer
====================================

Service Inventory:
    - cipher:           CipherEngine (AES-256-GCM envelopes, blind index),
                        bcrypt password hashing, build_cipher_engine()
    - profile_codec:    ProfileCodec, encode/decode of the sensitive fields
    - profile_service:  ProfileService, the encrypted-field profile record
    - account_service:  AccountService, registration, login, admin management
    - encryption_jobs:  EncryptionJobService, migration, verification, stats

Services are built per request from an AsyncSession and the CipherEngine
held on app.state (see routes/dependencies.py); none of them keeps
module-level state.
"""
