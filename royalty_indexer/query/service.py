"""
Read-only projections over the fact store and the royalty ledger.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..db.services import (
    AllocationService,
    BalanceService,
    DependencyEdgeService,
    ParameterService,
    PublicationService,
    SaleService,
)
from ..errors import SaleNotFound
from ..events import ArtifactRef
from ..royalties.calculator import RoyaltyParameters


class QueryService:
    """Pure reads; nothing here writes or triggers computation."""

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    def pending_balance(self, beneficiary: str) -> int:
        return BalanceService(self.db).get(beneficiary)

    def beneficiary_summary(self, beneficiary: str) -> Dict[str, Any]:
        """Pending balance plus the sales that credited a beneficiary."""
        return {
            "beneficiary": beneficiary,
            "pending": str(self.pending_balance(beneficiary)),
            "sales": self.sales(beneficiary=beneficiary),
        }

    def sales(
        self, beneficiary: Optional[str] = None, limit: int = 1000, offset: int = 0
    ) -> List[Dict[str, Any]]:
        """Sales newest first, optionally only those crediting ``beneficiary``."""
        return [
            sale.to_dict()
            for sale in SaleService(self.db).list(beneficiary, limit=limit, offset=offset)
        ]

    def publications(self, limit: int = 1000, offset: int = 0) -> List[Dict[str, Any]]:
        return [
            publication.to_dict()
            for publication in PublicationService(self.db).list(limit=limit, offset=offset)
        ]

    def latest_parameters(self) -> Dict[str, Any]:
        """Latest recorded parameter set, or the defaults when none was recorded."""
        latest = ParameterService(self.db).latest()
        if latest is None:
            return {**RoyaltyParameters.defaults(self.settings).to_dict(), "source": "default"}
        return {**latest.to_dict(), "source": "recorded"}

    def dependencies(self, artifact: ArtifactRef) -> Dict[str, Any]:
        """Stored dependency closure of an artifact, ascending depth."""
        publications = PublicationService(self.db)
        rows = []
        for dependency, depth in DependencyEdgeService(self.db).edges_from(artifact):
            publication = publications.get(dependency)
            rows.append(
                {
                    "origin": dependency.origin,
                    "local_id": dependency.local_id,
                    "depth": depth,
                    "author": publication.author if publication else None,
                }
            )
        return {
            "origin": artifact.origin,
            "local_id": artifact.local_id,
            "dependencies": rows,
        }

    def graph(self, artifact: ArtifactRef) -> Dict[str, Any]:
        """Forward and reverse edges around an artifact."""
        edges = DependencyEdgeService(self.db)
        publication = PublicationService(self.db).get(artifact)
        return {
            "artifact": {
                "origin": artifact.origin,
                "local_id": artifact.local_id,
                "author": publication.author if publication else None,
            },
            "dependencies": [
                {"origin": dep.origin, "local_id": dep.local_id, "depth": depth}
                for dep, depth in edges.edges_from(artifact)
            ],
            "dependents": [
                {"origin": dep.origin, "local_id": dep.local_id, "depth": depth}
                for dep, depth in edges.edges_to(artifact)
            ],
        }

    def royalty_tree(self, sale_id: str) -> Dict[str, Any]:
        """Allocation breakdown of a sale, ascending depth.

        Raises:
            SaleNotFound: the sale does not exist
        """
        sale = SaleService(self.db).get(sale_id)
        if sale is None:
            raise SaleNotFound(sale_id)
        return {
            "sale_id": sale_id,
            "sale": sale.to_dict(),
            "royalty_distribution": [
                allocation.to_dict()
                for allocation in AllocationService(self.db).for_sale(sale_id)
            ],
        }
