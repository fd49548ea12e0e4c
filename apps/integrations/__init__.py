"""
Provider Integrations app.

Declares the capability contracts the release engine consumes from external
systems (source control, CI/CD, test management, ticketing, chat) and
resolves a tenant's configured adapter for each of them.
"""
