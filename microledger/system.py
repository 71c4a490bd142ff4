"""
System wiring

Builds every ledger component on top of a single record store.
"""

from typing import Optional

from .audit import AuditTrail
from .collections import CollectionManager
from .config import LedgerConfig, get_config
from .loans import LoanManager
from .locking import LoanLockRegistry
from .logging_config import setup_logging
from .reconciliation import ReconciliationEngine
from .storage import StorageInterface, create_storage


class LedgerSystem:
    """Collection ledger with all components initialized"""

    def __init__(self, storage: Optional[StorageInterface] = None,
                 config: Optional[LedgerConfig] = None,
                 configure_logging: bool = False):
        self.config = config or get_config()

        if configure_logging:
            setup_logging(self.config.log_level, fmt=self.config.log_format)

        if storage is None:
            storage = create_storage(self.config.storage_backend, self.config.database_path)
        self.storage = storage

        self.audit_trail = AuditTrail(
            self.storage,
            table_name=self.config.audit_table,
            enabled=self.config.enable_audit_logging
        )
        self.locks = LoanLockRegistry(timeout=self.config.lock_timeout_seconds)
        self.reconciler = ReconciliationEngine(self.storage, self.locks, self.audit_trail)
        self.loan_manager = LoanManager(
            self.storage, self.reconciler, self.locks, self.audit_trail,
            loan_number_prefix=self.config.loan_number_prefix,
            loan_number_width=self.config.loan_number_width
        )
        self.collection_manager = CollectionManager(
            self.storage, self.loan_manager, self.reconciler, self.locks, self.audit_trail
        )

    def close(self) -> None:
        self.storage.close()
