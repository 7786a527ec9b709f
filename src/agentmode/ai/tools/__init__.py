"""Agent tools exposed to the model.

Implementations live in their own modules; :mod:`.tool_wiring` registers
them with the schemas declared in :mod:`.tool_registry`.
"""
