"""
Storefront permission codes and role mappings.

Capabilities are defined in code, not in the database: the storefront has
three fixed roles and no per-user overrides. Services receive an actor's
capability set and decide with it; routes gate on a single code through
decorators.require_permission.
"""

from .models.auth import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_STAFF


# =============================================================================
# PERMISSION CATEGORIES
# =============================================================================

class PermissionCategory:
    SHOPPING = "SHOPPING"
    ORDERS = "ORDERS"
    CATALOG = "CATALOG"
    REPORTING = "REPORTING"


# =============================================================================
# PERMISSION DEFINITIONS
# =============================================================================

# Each permission is defined as: (code, name, description, category)
PERMISSION_DEFINITIONS = [
    ("MANAGE_CART", "Manage Cart", "Maintain a personal shopping cart", PermissionCategory.SHOPPING),
    ("PLACE_ORDER", "Place Order", "Check out and create orders", PermissionCategory.SHOPPING),
    ("VIEW_ALL_ORDERS", "View All Orders", "Read any customer's orders", PermissionCategory.ORDERS),
    (
        "UPDATE_ORDER_STATUS",
        "Update Order Status",
        "Move orders along the fulfilment lifecycle",
        PermissionCategory.ORDERS,
    ),
    (
        "OVERRIDE_ORDER_TRANSITIONS",
        "Override Order Transitions",
        "Move an order to any status regardless of the lifecycle table",
        PermissionCategory.ORDERS,
    ),
    (
        "UPDATE_PAYMENT_STATUS",
        "Update Payment Status",
        "Manually set an order's payment status",
        PermissionCategory.ORDERS,
    ),
    ("MANAGE_PRODUCTS", "Manage Products", "Create, edit and archive products", PermissionCategory.CATALOG),
    ("ADJUST_STOCK", "Adjust Stock", "Add or remove product stock", PermissionCategory.CATALOG),
    ("VIEW_ANALYTICS", "View Analytics", "Read sales and customer analytics", PermissionCategory.REPORTING),
]


DEFAULT_ROLE_PERMISSIONS = {
    ROLE_CUSTOMER: [
        "MANAGE_CART",
        "PLACE_ORDER",
    ],
    ROLE_STAFF: [
        "MANAGE_CART",
        "PLACE_ORDER",
        "VIEW_ALL_ORDERS",
        "UPDATE_ORDER_STATUS",
        "ADJUST_STOCK",
        "VIEW_ANALYTICS",
    ],
    ROLE_ADMIN: [
        # Admin gets ALL permissions
        "MANAGE_CART",
        "PLACE_ORDER",
        "VIEW_ALL_ORDERS",
        "UPDATE_ORDER_STATUS",
        "OVERRIDE_ORDER_TRANSITIONS",
        "UPDATE_PAYMENT_STATUS",
        "MANAGE_PRODUCTS",
        "ADJUST_STOCK",
        "VIEW_ANALYTICS",
    ],
}


# =============================================================================
# PERMISSION HELPERS
# =============================================================================

def get_all_permission_codes():
    """Get list of all permission codes."""
    return [perm[0] for perm in PERMISSION_DEFINITIONS]


def get_permission_definition(code):
    """Get full definition for a permission code."""
    for perm in PERMISSION_DEFINITIONS:
        if perm[0] == code:
            return {
                "code": perm[0],
                "name": perm[1],
                "description": perm[2],
                "category": perm[3],
            }
    return None


def capabilities_for_role(role: str) -> frozenset:
    return frozenset(DEFAULT_ROLE_PERMISSIONS.get(role, ()))


def capabilities_for(user) -> frozenset:
    """Capability set of a user; inactive or missing users have none."""
    if user is None or not user.is_active:
        return frozenset()
    return capabilities_for_role(user.role)


def has_permission(user, code: str) -> bool:
    return code in capabilities_for(user)
