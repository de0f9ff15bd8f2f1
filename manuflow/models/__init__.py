from manuflow.models.company import Company
from manuflow.models.customer import Customer
from manuflow.models.lead import Lead
from manuflow.models.lead_activity import LeadActivity
from manuflow.models.role import Permission, Role, RolePermission
from manuflow.models.user import User

__all__ = [
    "Company", "Customer", "Lead", "LeadActivity",
    "Permission", "Role", "RolePermission", "User",
]
