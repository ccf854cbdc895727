"""
Role and permission definitions.

Roles are fixed (OWNER, MANAGER, CASHIER) and map to a static set of
permission codes; there is no per-user override table.
"""

ROLE_OWNER = "OWNER"
ROLE_MANAGER = "MANAGER"
ROLE_CASHIER = "CASHIER"

ROLES = (ROLE_OWNER, ROLE_MANAGER, ROLE_CASHIER)


# =============================================================================
# PERMISSION DEFINITIONS
# =============================================================================

# Each permission is defined as: code -> description
PERMISSION_DEFINITIONS = {
    "users.view": "View user accounts",
    "users.create": "Create user accounts",
    "users.edit": "Edit user accounts, roles and passwords",
    "users.delete": "Delete user accounts",
    "products.view": "View the product catalog and stock levels",
    "products.create": "Create products and categories",
    "products.edit": "Edit product master data (not stock)",
    "products.delete": "Delete unreferenced products",
    "sales.view": "View sales history",
    "sales.create": "Ring up sales at checkout",
    "stock.count": "Submit physical stock counts",
    "stock.adjust": "Create stock adjustments",
    "reports.view": "View sales, inventory and profit reports",
}


# =============================================================================
# DEFAULT ROLE PERMISSIONS
# =============================================================================

ROLE_PERMISSIONS = {
    ROLE_OWNER: set(PERMISSION_DEFINITIONS),
    ROLE_MANAGER: {
        "users.view",
        "products.view",
        "products.create",
        "products.edit",
        "sales.view",
        "sales.create",
        "stock.count",
        "stock.adjust",
        "reports.view",
    },
    ROLE_CASHIER: {
        "products.view",
        "sales.view",
        "sales.create",
        "stock.count",
    },
}


def role_has_permission(role: str, permission_code: str) -> bool:
    return permission_code in ROLE_PERMISSIONS.get(role, set())
