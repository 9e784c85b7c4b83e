"""
Ledger system assembly

Wires storage, audit trail, notification hub and the managers together so
the API layer (and scripts) share one set of components.
"""

from typing import Optional

from .audit import AuditTrail
from .budgets import FiscalYearBudgetManager
from .config import LedgerConfig, get_config
from .events import NotificationHub
from .funds import AllocationStore
from .reporting import ReportAggregator
from .sequences import SequenceGenerator
from .storage import StorageInterface, create_storage
from .transactions import TransactionLedger


class BudgetLedgerSystem:
    """Budget ledger with all components initialized"""

    def __init__(self, storage: Optional[StorageInterface] = None, config: Optional[LedgerConfig] = None,
                 notification_hub: Optional[NotificationHub] = None):
        self.config = config or get_config()

        # Initialize storage
        self.storage = storage or create_storage(self.config.database_url)

        # Initialize core components
        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.notification_hub = notification_hub or NotificationHub()
        self.sequences = SequenceGenerator(self.storage, self.config.sequence_max_retries)

        self.allocations = AllocationStore(
            self.storage, self.audit_trail, self.notification_hub,
            sequences=self.sequences, config=self.config
        )
        self.budgets = FiscalYearBudgetManager(self.storage, self.audit_trail, self.allocations)
        self.ledger = TransactionLedger(
            self.storage, self.allocations, self.audit_trail, self.notification_hub,
            sequences=self.sequences, config=self.config
        )
        self.reports = ReportAggregator(
            self.storage, self.allocations, self.ledger, self.audit_trail,
            self.notification_hub, sequences=self.sequences, config=self.config
        )

    def close(self) -> None:
        self.notification_hub.clear()
        self.storage.close()
