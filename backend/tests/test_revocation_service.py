from datetime import timedelta

import pytest

from conftest import CHROME_MAC, FIREFOX_WINDOWS
from sessionguard.core.deny_list import InMemoryDenyList
from sessionguard.core.device import generate_device_fingerprint
from sessionguard.core.exceptions import ResourceNotFoundError
from sessionguard.core.security import create_access_token, decode_access_token, decode_token, utcnow
from sessionguard.models.principal import Principal
from sessionguard.models.security import RefreshToken
from sessionguard.services.device_trust_service import device_trust_service
from sessionguard.services.revocation_service import RevocationService
from sessionguard.services.rotation_service import RotationService
from sessionguard.services.token_service import TokenService, token_service


def _login(db, principal, user_agent=CHROME_MAC):
    return token_service.issue_pair(
        db, principal.id, principal.email, principal.name,
        device_descriptor=user_agent, network_origin="10.0.0.1",
    )


def test_revoke_single_flags_exactly_one_record(db, principal):
    service = RevocationService(deny_list=InMemoryDenyList())
    first = _login(db, principal)
    second = _login(db, principal, FIREFOX_WINDOWS)

    assert service.revoke_single(db, first.refresh_token) is True

    db.expire_all()
    by_token = {r.token: r for r in db.query(RefreshToken).all()}
    assert by_token[first.refresh_token].revoked is True
    assert by_token[first.refresh_token].revoked_at is not None
    assert by_token[second.refresh_token].revoked is False


def test_revoke_single_ignores_unknown_tokens(db, principal):
    service = RevocationService(deny_list=InMemoryDenyList())
    pair = _login(db, principal)
    assert service.revoke_single(db, "garbage") is False
    assert service.revoke_single(db, pair.access_token) is False


def test_revoke_family_leaves_other_families_alone(db, principal):
    service = RevocationService(deny_list=InMemoryDenyList())
    rotation = RotationService(revocation=service)
    pair = _login(db, principal)
    rotation.rotate(db, pair.refresh_token)
    other = _login(db, principal, FIREFOX_WINDOWS)

    revoked = service.revoke_family(db, decode_token(pair.refresh_token)["fam"])

    assert revoked == 2
    db.expire_all()
    other_record = db.query(RefreshToken).filter(RefreshToken.token == other.refresh_token).one()
    assert other_record.revoked is False
    # Already-revoked records are not counted again.
    assert service.revoke_family(db, decode_token(pair.refresh_token)["fam"]) == 0


def test_revoke_all_bumps_epoch_and_revokes_everything(db, principal):
    service = RevocationService(deny_list=InMemoryDenyList())
    _login(db, principal)
    _login(db, principal, FIREFOX_WINDOWS)

    assert service.revoke_all_for_principal(db, principal.id) == 2
    assert service.revoke_all_for_principal(db, principal.id) == 3

    db.expire_all()
    assert db.get(Principal, principal.id).epoch == 3
    assert all(r.revoked for r in db.query(RefreshToken).all())


def test_revoke_all_for_unknown_principal(db):
    service = RevocationService(deny_list=InMemoryDenyList())
    with pytest.raises(ResourceNotFoundError):
        service.revoke_all_for_principal(db, "missing")


def test_revoke_all_does_not_touch_other_principals(db, principal):
    service = RevocationService(deny_list=InMemoryDenyList())
    other = Principal(email="bo@example.com", name="Bo")
    db.add(other)
    db.commit()
    pair = _login(db, other)

    service.revoke_all_for_principal(db, principal.id)

    db.expire_all()
    assert db.get(Principal, other.id).epoch == 1
    record = db.query(RefreshToken).filter(RefreshToken.token == pair.refresh_token).one()
    assert record.revoked is False


def test_blacklist_access_sizes_entry_to_remaining_lifetime(db, principal):
    deny_list = InMemoryDenyList()
    service = RevocationService(deny_list=deny_list)
    pair = _login(db, principal)

    assert service.blacklist_access(pair.access_token) is True
    assert deny_list.contains(decode_access_token(pair.access_token)["jti"])

    expired = create_access_token({"sub": principal.id, "email": principal.email}, expires_delta=timedelta(seconds=-1))
    assert service.blacklist_access(expired) is False
    assert service.blacklist_access(pair.refresh_token) is False
    assert len(deny_list) == 1


def test_list_devices_returns_chain_heads_with_trust_flag(db, principal):
    service = RevocationService(deny_list=InMemoryDenyList())
    rotation = RotationService(revocation=service)
    chrome = _login(db, principal, CHROME_MAC)
    rotation.rotate(db, chrome.refresh_token)
    firefox = _login(db, principal, FIREFOX_WINDOWS)
    expired = _login(db, principal, CHROME_MAC)
    record = db.query(RefreshToken).filter(RefreshToken.token == expired.refresh_token).one()
    record.expires_at = utcnow() - timedelta(seconds=1)
    db.commit()
    revoked = _login(db, principal, FIREFOX_WINDOWS)
    service.revoke_single(db, revoked.refresh_token)
    device_trust_service.upsert_trust(db, principal.id, generate_device_fingerprint(FIREFOX_WINDOWS))

    devices = service.list_devices(db, principal.id)

    assert len(devices) == 2
    by_os = {d["os"]: d for d in devices}
    assert by_os["Windows"]["is_trusted_device"] is True
    assert by_os["macOS"]["is_trusted_device"] is False
    assert by_os["macOS"]["browser"] == "Chrome 120"
    assert firefox.refresh_token not in str(devices)


def test_revoke_device_revokes_its_whole_chain(db, principal):
    service = RevocationService(deny_list=InMemoryDenyList())
    rotation = RotationService(revocation=service)
    pair = _login(db, principal)
    rotation.rotate(db, pair.refresh_token)
    head = service.list_devices(db, principal.id)[0]

    assert service.revoke_device(db, principal.id, head["id"]) is True

    db.expire_all()
    assert all(r.revoked for r in db.query(RefreshToken).all())
    assert service.list_devices(db, principal.id) == []


def test_revoke_device_is_owner_scoped(db, principal):
    service = RevocationService(deny_list=InMemoryDenyList())
    other = Principal(email="eve@example.com", name="Eve")
    db.add(other)
    db.commit()
    _login(db, other)
    record = db.query(RefreshToken).one()

    assert service.revoke_device(db, principal.id, record.id) is False
    db.refresh(record)
    assert record.revoked is False


def test_cleanup_expired_tokens(db, principal):
    service = RevocationService(deny_list=InMemoryDenyList())
    _login(db, principal)
    stale = _login(db, principal, FIREFOX_WINDOWS)
    record = db.query(RefreshToken).filter(RefreshToken.token == stale.refresh_token).one()
    record.expires_at = utcnow() - timedelta(days=1)
    db.commit()

    assert service.cleanup_expired_tokens(db) == 1
    assert db.query(RefreshToken).count() == 1


def test_injected_empty_deny_list_is_kept():
    mine = InMemoryDenyList()
    assert len(mine) == 0
    assert RevocationService(deny_list=mine)._deny_list is mine
    assert TokenService(deny_list=mine).deny_list is mine


def test_blacklist_access_reports_failed_write(db, principal):
    class RefusingDenyList(InMemoryDenyList):
        def add(self, token_id, ttl_seconds):
            return False

    pair = _login(db, principal)
    assert RevocationService(deny_list=RefusingDenyList()).blacklist_access(pair.access_token) is False
