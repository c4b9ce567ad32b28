from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Mapping, Optional
from uuid import UUID

from django.conf import settings

from .exceptions import CatalogLookupError


class CatalogLookup(ABC):
    """Maps a billing plan name to the catalog product it belongs to."""

    @abstractmethod
    def product_for_plan(self, plan_name: str, tenant_id: UUID, account_id: Optional[UUID] = None) -> Optional[str]:
        """Return the product name, None if the plan has no product, or raise CatalogLookupError."""
        raise NotImplementedError


class StaticCatalog(CatalogLookup):
    """
    Catalog backed by fixed plan -> product mappings.

    `tenant_plans` entries win over `plans` for their tenant.
    """

    def __init__(
        self,
        plans: Optional[Mapping[str, str]] = None,
        tenant_plans: Optional[Mapping[str, Mapping[str, str]]] = None,
    ):
        self.plans = dict(plans or {})
        self.tenant_plans = {str(k): dict(v) for k, v in (tenant_plans or {}).items()}

    @classmethod
    def from_settings(cls) -> "StaticCatalog":
        return cls(
            plans=getattr(settings, "EASYTAX_PLAN_PRODUCTS", {}),
            tenant_plans=getattr(settings, "EASYTAX_TENANT_PLAN_PRODUCTS", {}),
        )

    def product_for_plan(self, plan_name, tenant_id, account_id=None):
        if not plan_name:
            raise CatalogLookupError("plan name is required")
        tenant_plans = self.tenant_plans.get(str(tenant_id), {})
        if plan_name in tenant_plans:
            return tenant_plans[plan_name]
        return self.plans.get(plan_name)
