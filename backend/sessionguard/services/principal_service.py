"""Principal service - resolves verified identities to persisted principals"""

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import Optional
from sessionguard.models.principal import Principal
from sessionguard.schemas.auth import IdentityProofClaims
import logging

logger = logging.getLogger(__name__)


class PrincipalService:
    """Service for principal lookup and upsert"""

    @staticmethod
    def get_by_id(db: Session, principal_id: str) -> Optional[Principal]:
        return db.get(Principal, principal_id)

    @staticmethod
    def get_by_email(db: Session, email: str) -> Optional[Principal]:
        return db.query(Principal).filter(Principal.email == email.strip().lower()).first()

    @staticmethod
    def resolve(db: Session, identity: IdentityProofClaims) -> Principal:
        """
        Find or create the principal behind a verified identity

        Args:
            db: Database session
            identity: Claims from the identity-proof step

        Returns:
            Principal with email/name refreshed from the identity
        """
        principal = None
        if identity.principal_id:
            principal = PrincipalService.get_by_id(db, identity.principal_id)
        if principal is None:
            principal = PrincipalService.get_by_email(db, identity.email)

        if principal is None:
            principal = Principal(email=identity.email, name=identity.name or "")
            if identity.principal_id:
                principal.id = identity.principal_id
            db.add(principal)
            try:
                db.commit()
            except IntegrityError:
                # Same identity resolved concurrently.
                db.rollback()
                principal = PrincipalService.get_by_email(db, identity.email)
                if principal is None:
                    raise
                return principal
            db.refresh(principal)
            logger.info(f"Created principal: {principal.id}")
            return principal

        changed = False
        if principal.email != identity.email:
            principal.email = identity.email
            changed = True
        if identity.name and principal.name != identity.name:
            principal.name = identity.name
            changed = True
        if changed:
            db.commit()
            db.refresh(principal)
        return principal


principal_service = PrincipalService()
