from .tenancy import Tenant, TenantUser, Location, Customer
from .subscriptions import SubscriptionPlan, TenantSubscription, FeatureFlag
from .catalog import ProductVariant, UnitDefinition, ProductBundle
from .inventory import StockLevel, StockMovement, StockReservation
from .sales import Order, OrderLine, FinancialTransaction
from .events import Event
from . import immutability  # noqa: F401

__all__ = [
    'Tenant', 'TenantUser', 'Location', 'Customer',
    'SubscriptionPlan', 'TenantSubscription', 'FeatureFlag',
    'ProductVariant', 'UnitDefinition', 'ProductBundle',
    'StockLevel', 'StockMovement', 'StockReservation',
    'Order', 'OrderLine', 'FinancialTransaction',
    'Event',
]
