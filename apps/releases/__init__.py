"""
Releases app.

Owns the release lifecycle: phases (KICKOFF → REGRESSION → POST_REGRESSION →
DONE), regression slots and cycles, the regression approval gate and the
abort path before kickoff.
"""
