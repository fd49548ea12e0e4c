"""
Build Uploads app.

Ledger of manually staged build artifacts. Each upload is consumed at most
once by a build task or a regression cycle.
"""
