# Import all the models, so that Base has them before being
# imported by Alembic
from app.db.base_class import Base  # noqa

# Tenants and their staff
from app.models.company import Company  # noqa
from app.models.employee import Employee  # noqa

# RBAC
from app.models.role import Role  # noqa

# Audit trail
from app.core.audit import AuditLog  # noqa
