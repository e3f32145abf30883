from datetime import timedelta

import pytest

from conftest import CHROME_MAC
from sessionguard.core.deny_list import InMemoryDenyList
from sessionguard.core.device import generate_device_fingerprint
from sessionguard.core.exceptions import (
    ExpiredCredentialError,
    InvalidCredentialError,
    SessionInvalidatedError,
)
from sessionguard.core.security import (
    create_access_token,
    create_refresh_token,
    decode_access_token,
    decode_token,
    utcnow,
)
from sessionguard.models.security import RefreshToken
from sessionguard.services.token_service import TokenService


def _service():
    return TokenService(deny_list=InMemoryDenyList())


def test_issue_pair_persists_one_record_bound_to_device(db, principal):
    pair = _service().issue_pair(
        db, principal.id, principal.email, principal.name,
        device_descriptor=CHROME_MAC, network_origin="::ffff:10.0.0.4",
    )

    records = db.query(RefreshToken).all()
    assert len(records) == 1
    record = records[0]
    payload = decode_token(pair.refresh_token)
    assert record.token == pair.refresh_token
    assert record.token_jti == payload["jti"]
    assert record.family_id == payload["fam"]
    assert record.epoch_at_issue == payload["ver"] == 1
    assert record.device_fingerprint == generate_device_fingerprint(CHROME_MAC)
    assert record.ip_address == "10.0.0.4"
    assert record.revoked is False
    assert record.replaced_by_token is None


def test_issue_pair_starts_a_new_family_each_login(db, principal):
    service = _service()
    first = service.issue_pair(db, principal.id, principal.email, principal.name)
    second = service.issue_pair(db, principal.id, principal.email, principal.name)
    assert decode_token(first.refresh_token)["fam"] != decode_token(second.refresh_token)["fam"]


def test_issue_pair_uses_current_epoch(db, principal):
    principal.epoch = 4
    db.commit()
    pair = _service().issue_pair(db, principal.id, principal.email, principal.name)
    assert decode_token(pair.refresh_token)["ver"] == 4


def test_verify_access_token_returns_principal_claims(db, principal):
    service = _service()
    pair = service.issue_pair(db, principal.id, principal.email, principal.name)
    claims = service.verify_access_token(pair.access_token)
    assert claims.principal_id == principal.id
    assert claims.email == principal.email
    assert claims.name == "Ana"


def test_verify_access_token_rejects_refresh_and_garbage(db, principal):
    service = _service()
    pair = service.issue_pair(db, principal.id, principal.email, principal.name)
    with pytest.raises(InvalidCredentialError):
        service.verify_access_token(pair.refresh_token)
    with pytest.raises(InvalidCredentialError):
        service.verify_access_token("garbage")


def test_verify_access_token_reports_expiry():
    token = create_access_token({"sub": "p-1", "email": "a@example.com"}, expires_delta=timedelta(seconds=-1))
    with pytest.raises(ExpiredCredentialError):
        _service().verify_access_token(token)


def test_verify_access_token_honours_deny_list(db, principal):
    service = _service()
    pair = service.issue_pair(db, principal.id, principal.email, principal.name)
    service.deny_list.add(decode_access_token(pair.access_token)["jti"], 60)
    with pytest.raises(InvalidCredentialError):
        service.verify_access_token(pair.access_token)


def test_verify_refresh_token_touches_last_used(db, principal):
    service = _service()
    pair = service.issue_pair(db, principal.id, principal.email, principal.name)
    record = db.query(RefreshToken).one()
    record.last_used_at = utcnow() - timedelta(days=1)
    db.commit()

    claims = service.verify_refresh_token(db, pair.refresh_token)

    db.refresh(record)
    assert claims.principal_id == principal.id
    assert utcnow() - record.last_used_at < timedelta(minutes=1)


def test_verify_refresh_token_failure_kinds(db, principal):
    service = _service()
    pair = service.issue_pair(db, principal.id, principal.email, principal.name)
    record = db.query(RefreshToken).one()

    with pytest.raises(InvalidCredentialError):
        service.verify_refresh_token(db, pair.access_token)
    with pytest.raises(InvalidCredentialError):
        service.verify_refresh_token(db, create_refresh_token({"sub": principal.id}, family_id="unknown"))

    principal.epoch = 2
    db.commit()
    with pytest.raises(SessionInvalidatedError):
        service.verify_refresh_token(db, pair.refresh_token)

    record.expires_at = utcnow() - timedelta(seconds=1)
    db.commit()
    with pytest.raises(ExpiredCredentialError):
        service.verify_refresh_token(db, pair.refresh_token)
