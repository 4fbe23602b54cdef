# Overview: Permission catalogue. Codes are "<module>:<action>".
# Each module permission is defined as: (code, name, description, module)

MODULES = [
    ("sales", "Ventas"),
    ("products", "Productos"),
    ("inventory", "Inventario"),
    ("customers", "Clientes"),
    ("purchases", "Compras"),
    ("suppliers", "Proveedores"),
    ("orders", "Ordenes de compra"),
    ("treasury", "Tesoreria"),
    ("reports", "Reportes"),
]

MODULE_ACTIONS = ("read", "write")

# reports is read-only
READ_ONLY_MODULES = {"reports"}


MODULE_PERMISSIONS = [
    (
        f"{module}:{action}",
        f"{label} ({'lectura' if action == 'read' else 'escritura'})",
        f"{'View' if action == 'read' else 'Create and modify'} {module} records",
        module,
    )
    for module, label in MODULES
    for action in MODULE_ACTIONS
    if not (action == "write" and module in READ_ONLY_MODULES)
]


STANDALONE_PERMISSIONS = [
    ("shifts:read", "Ver turnos", "View cash register shifts and summaries", "shifts"),
    ("shifts:write", "Operar turnos", "Open and close shifts, add or remove cash", "shifts"),
    ("settings:write", "Configuracion", "Manage roles, locations, registers and payment methods", "settings"),
    ("import:write", "Importar", "Bulk stock updates", "import"),
]


SPECIAL_ACTIONS = [
    (
        "view_expected_cash",
        "Ver efectivo esperado",
        "See the expected cash amount before counting when closing a shift",
    ),
]


DEFAULT_ROLES = {
    "admin": {
        "description": "Full access",
        "permissions": "*",
        "special_actions": ["view_expected_cash"],
    },
    "manager": {
        "description": "Store management without settings",
        "permissions": [
            "sales:read", "sales:write",
            "products:read", "products:write",
            "inventory:read", "inventory:write",
            "customers:read", "customers:write",
            "purchases:read", "purchases:write",
            "suppliers:read", "suppliers:write",
            "orders:read", "orders:write",
            "treasury:read", "treasury:write",
            "reports:read",
            "shifts:read", "shifts:write",
        ],
        "special_actions": ["view_expected_cash"],
    },
    "cashier": {
        "description": "Point of sale operation",
        "permissions": [
            "sales:read", "sales:write",
            "products:read",
            "inventory:read",
            "customers:read", "customers:write",
            "shifts:read", "shifts:write",
        ],
        "special_actions": [],
    },
}
