"""Outbound API connectors package."""
from connectors.hubspot import ContactDetails, HubSpotClient

__all__ = ["ContactDetails", "HubSpotClient"]
