"""notify/ -- Outbound notifications (mail) for Forsetti.

Layer rule: notify/ imports only stdlib + core/. auth/ and api/ import from
notify/, not the other way around.
"""
