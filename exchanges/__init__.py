"""
Exchange Connectors Package

Each exchange has its own subfolder with the streaming logic for that venue.
Connectors translate wire messages into the normalized schemas in core.schemas
and publish them on the event bus.
"""
