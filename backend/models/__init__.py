"""Database models package."""
from models.database import Base, get_session, init_db, close_db, get_pool_status, get_engine
from models.organization import Organization
from models.org_application_link import OrgApplicationLink
from models.client import Client
from models.association import AssociatedObjectType, Invoice, PaymentMethod
from models.hubspot_token import HubSpotToken

__all__ = [
    "Base",
    "get_session",
    "init_db",
    "close_db",
    "get_pool_status",
    "get_engine",
    "Organization",
    "OrgApplicationLink",
    "Client",
    "AssociatedObjectType",
    "PaymentMethod",
    "Invoice",
    "HubSpotToken",
]
