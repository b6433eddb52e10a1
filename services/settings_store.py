"""Tenant-scoped default roll settings."""

from __future__ import annotations

import threading
from typing import Dict, Any, Optional

from logging_config import get_logger
from models.settings import RollSettings


logger = get_logger(__name__)


class SettingsStore:
    """
    Default RollSettings per tenant.

    Tenants without saved settings get the store-wide defaults. Values
    handed out are frozen, so callers can keep them as job snapshots.
    """

    def __init__(self, defaults: Optional[RollSettings] = None):
        self._defaults = (defaults or RollSettings()).validate()
        self._settings: Dict[str, RollSettings] = {}
        self._lock = threading.Lock()

    @property
    def defaults(self) -> RollSettings:
        return self._defaults

    def get(self, tenant_id: str) -> RollSettings:
        with self._lock:
            return self._settings.get(tenant_id, self._defaults)

    def update(self, tenant_id: str, changes: Dict[str, Any]) -> RollSettings:
        """
        Merge partial changes into a tenant's settings.

        Raises:
            InvalidInputError: If the merged settings are invalid (nothing
                is saved in that case)
        """
        with self._lock:
            current = self._settings.get(tenant_id, self._defaults)
            updated = RollSettings.from_dict(changes, base=current).validate()
            self._settings[tenant_id] = updated

        logger.info(f"Updated roll settings for tenant {tenant_id}")
        return updated

    def reset(self, tenant_id: str) -> RollSettings:
        with self._lock:
            self._settings.pop(tenant_id, None)
        return self._defaults
