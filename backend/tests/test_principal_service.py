from sessionguard.models.principal import Principal
from sessionguard.schemas.auth import IdentityProofClaims
from sessionguard.services.principal_service import principal_service


def test_resolve_by_id_refreshes_email_and_name(db, principal):
    resolved = principal_service.resolve(
        db, IdentityProofClaims(principal_id=principal.id, email="Ana.New@Example.com", name="Ana N")
    )

    assert resolved.id == principal.id
    assert resolved.email == "ana.new@example.com"
    assert resolved.name == "Ana N"
    assert db.query(Principal).count() == 1


def test_resolve_creates_unknown_identity(db):
    created = principal_service.resolve(db, IdentityProofClaims(email="bo@example.com"))

    assert created.epoch == 1
    assert principal_service.get_by_id(db, created.id).email == "bo@example.com"
