"""auth/ -- Tiered authentication and session management for TierGate.

Layer rule: auth/ imports only stdlib + third-party libraries, plus core/
for configuration. It does NOT import from api/ or web/.
api/ and web/ import from auth/, not the other way around.
"""
