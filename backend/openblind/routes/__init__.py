# Routes package init
"""
OpenBlind Backend — API Routes Package
========================================

Route Inventory:
    - auth.py:      POST /api/auth/register, POST /api/auth/login
    - profiles.py:  GET/PUT /api/users/{user_id}/profile
                    PUT     /api/users/{user_id}/password
    - admin.py:     /api/admin/users/* and /api/admin/encryption/*
    - health.py:    GET /health

Routes stay thin: parse the request, call a service, shape the response.
Shared dependencies live in dependencies.py.
"""
