# flask_app/models/__init__.py
"""
Database models package
"""

from .admin import AdminLog
from .base import BaseModel, db
from .internal import Customer, Department, Employee, Project, Vendor
from .organization import Organization
from .role import Permission, Role, RolePermission, UserOrganization, ensure_default_roles
from .user import User
from .vista import (
    EntityType,
    ImportBatch,
    LinkStatus,
    VistaContract,
    VistaCustomer,
    VistaEmployee,
    VistaVendor,
    VistaWorkOrder,
)

__all__ = [
    "db",
    "BaseModel",
    "User",
    "AdminLog",
    "Organization",
    "Role",
    "Permission",
    "RolePermission",
    "UserOrganization",
    "ensure_default_roles",
    # Platform entities
    "Customer",
    "Department",
    "Employee",
    "Project",
    "Vendor",
    # Vista reconciliation
    "EntityType",
    "ImportBatch",
    "LinkStatus",
    "VistaContract",
    "VistaCustomer",
    "VistaEmployee",
    "VistaVendor",
    "VistaWorkOrder",
]
