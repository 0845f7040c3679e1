"""Central model registry. Import all models so Alembic autodiscover works."""

from budgetdesk.database import Base  # noqa: F401

from budgetdesk.models.customer import Customer  # noqa: F401
from budgetdesk.models.user import User  # noqa: F401
from budgetdesk.models.budget import Budget, BudgetUtilization  # noqa: F401
from budgetdesk.models.spend_request import SpendRequest  # noqa: F401
from budgetdesk.models.audit_log import AuditLog  # noqa: F401
from budgetdesk.models.approval_threshold import ApprovalThreshold  # noqa: F401
from budgetdesk.models.import_history import ImportHistory  # noqa: F401
from budgetdesk.models.sync_history import SyncHistory  # noqa: F401
