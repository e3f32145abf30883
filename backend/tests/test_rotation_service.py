import threading
from datetime import timedelta

import pytest

from conftest import CHROME_MAC, FIREFOX_WINDOWS
from sessionguard.core.database import SessionLocal
from sessionguard.core.device import generate_device_fingerprint
from sessionguard.core.exceptions import DeviceMismatchError, TokenReuseDetectedError
from sessionguard.core.security import create_access_token, create_refresh_token, decode_token, utcnow
from sessionguard.models.principal import Principal
from sessionguard.models.security import RefreshToken, SecurityAlert
from sessionguard.services.revocation_service import revocation_service
from sessionguard.services.rotation_service import RotationFailure, RotationService
from sessionguard.services.token_service import token_service

F1 = generate_device_fingerprint(CHROME_MAC)
F2 = generate_device_fingerprint(FIREFOX_WINDOWS)


def _login(db, principal, user_agent=CHROME_MAC):
    return token_service.issue_pair(
        db, principal.id, principal.email, principal.name,
        device_descriptor=user_agent, network_origin="10.0.0.1",
    )


def _rotate(service, db, token, user_agent=CHROME_MAC):
    return service.rotate(
        db, token,
        device_descriptor=user_agent,
        network_origin="10.0.0.1",
        request_fingerprint=generate_device_fingerprint(user_agent),
    )


def _age_rotation(db, token, seconds):
    record = db.query(RefreshToken).filter(RefreshToken.token == token).one()
    record.rotated_at = utcnow() - timedelta(seconds=seconds)
    db.commit()


def _family(db, token):
    db.expire_all()
    family_id = decode_token(token, verify_exp=False)["fam"]
    return db.query(RefreshToken).filter(RefreshToken.family_id == family_id).all()


def _alerts(db, alert_type):
    db.expire_all()
    return db.query(SecurityAlert).filter(SecurityAlert.alert_type == alert_type).all()


def test_fresh_pair_rotates_once_into_same_family(db, principal):
    service = RotationService()
    pair = _login(db, principal)

    result = _rotate(service, db, pair.refresh_token)

    assert result.ok
    assert result.via_grace is False
    assert result.principal.principal_id == principal.id
    old_payload = decode_token(pair.refresh_token)
    new_payload = decode_token(result.pair.refresh_token)
    assert new_payload["fam"] == old_payload["fam"]
    assert new_payload["ver"] == old_payload["ver"]
    assert new_payload["jti"] != old_payload["jti"]

    records = {r.token: r for r in _family(db, pair.refresh_token)}
    assert len(records) == 2
    old, new = records[pair.refresh_token], records[result.pair.refresh_token]
    # Rotated is not revoked.
    assert old.revoked is False
    assert old.replaced_by_token == result.pair.refresh_token
    assert old.replaced_by_jti == new.token_jti
    assert old.rotated_at is not None
    assert new.device_fingerprint == old.device_fingerprint == F1
    assert new.epoch_at_issue == old.epoch_at_issue
    assert new.replaced_by_token is None


def test_new_access_token_identifies_principal(db, principal):
    service = RotationService()
    pair = _login(db, principal)
    result = _rotate(service, db, pair.refresh_token)
    claims = token_service.verify_access_token(result.pair.access_token)
    assert claims.principal_id == principal.id
    assert claims.email == principal.email


def test_replay_after_grace_window_is_theft(db, principal):
    service = RotationService()
    pair = _login(db, principal)
    second = _rotate(service, db, pair.refresh_token).pair
    _age_rotation(db, pair.refresh_token, 11)

    result = _rotate(service, db, pair.refresh_token)

    assert result.failure is RotationFailure.TOKEN_REUSE_DETECTED
    family = _family(db, pair.refresh_token)
    assert family and all(record.revoked for record in family)
    # The legitimate second-generation token is burned too.
    assert _rotate(service, db, second.refresh_token).failure is RotationFailure.TOKEN_REUSE_DETECTED
    assert len(_alerts(db, "possible_reuse")) >= 1


def test_replay_raises_exactly_one_reuse_alert(db, principal):
    service = RotationService()
    pair = _login(db, principal)
    _rotate(service, db, pair.refresh_token)
    _age_rotation(db, pair.refresh_token, 30)

    _rotate(service, db, pair.refresh_token)

    alerts = _alerts(db, "possible_reuse")
    assert len(alerts) == 1
    assert alerts[0].principal_id == principal.id
    family_id = decode_token(pair.refresh_token)["fam"]
    assert family_id not in alerts[0].message
    assert family_id not in (alerts[0].metadata_json or "")


def test_replay_within_grace_returns_existing_successor(db, principal):
    service = RotationService()
    pair = _login(db, principal)
    first = _rotate(service, db, pair.refresh_token)

    duplicate = _rotate(service, db, pair.refresh_token)

    assert duplicate.ok
    assert duplicate.via_grace is True
    assert duplicate.pair.refresh_token == first.pair.refresh_token
    assert duplicate.pair.access_token
    assert len(_family(db, pair.refresh_token)) == 2
    assert _alerts(db, "possible_reuse") == []


def test_grace_does_not_resurrect_a_revoked_successor(db, principal):
    service = RotationService()
    pair = _login(db, principal)
    first = _rotate(service, db, pair.refresh_token)
    assert revocation_service.revoke_single(db, first.pair.refresh_token) is True

    result = _rotate(service, db, pair.refresh_token)

    assert result.failure is RotationFailure.TOKEN_REUSE_DETECTED


def test_epoch_bump_invalidates_every_earlier_token(db, principal):
    service = RotationService()
    live = _login(db, principal)
    revoked = _login(db, principal, FIREFOX_WINDOWS)
    revocation_service.revoke_single(db, revoked.refresh_token)

    assert revocation_service.revoke_all_for_principal(db, principal.id) == 2

    assert _rotate(service, db, live.refresh_token).failure is RotationFailure.SESSION_INVALIDATED
    assert (
        _rotate(service, db, revoked.refresh_token, FIREFOX_WINDOWS).failure
        is RotationFailure.SESSION_INVALIDATED
    )
    assert all(record.revoked for record in _family(db, live.refresh_token))
    # Epoch takes precedence over reuse: no theft alert.
    assert _alerts(db, "possible_reuse") == []


def test_epoch_outranks_device_mismatch(db, principal):
    service = RotationService()
    pair = _login(db, principal)
    principal.epoch = 2
    db.commit()

    result = _rotate(service, db, pair.refresh_token, FIREFOX_WINDOWS)

    assert result.failure is RotationFailure.SESSION_INVALIDATED
    assert _alerts(db, "device_mismatch") == []


def test_fingerprint_mismatch_revokes_family(db, principal):
    service = RotationService()
    pair = _login(db, principal)

    result = _rotate(service, db, pair.refresh_token, FIREFOX_WINDOWS)

    assert result.failure is RotationFailure.DEVICE_MISMATCH
    assert all(record.revoked for record in _family(db, pair.refresh_token))
    assert len(_alerts(db, "device_mismatch")) == 1
    with pytest.raises(DeviceMismatchError) as exc_info:
        result.unwrap()
    assert exc_info.value.status_code == 401
    assert exc_info.value.details == {"code": "device_mismatch"}
    assert F1 not in exc_info.value.message


def test_mismatch_on_second_generation_then_original_fails(db, principal):
    service = RotationService()
    pair = _login(db, principal)
    second = _rotate(service, db, pair.refresh_token, CHROME_MAC)
    assert second.ok

    mismatch = _rotate(service, db, second.pair.refresh_token, FIREFOX_WINDOWS)
    assert mismatch.failure is RotationFailure.DEVICE_MISMATCH
    assert all(record.revoked for record in _family(db, pair.refresh_token))

    # Still inside the grace window, but the successor is revoked.
    later = _rotate(service, db, pair.refresh_token, CHROME_MAC)
    assert not later.ok
    assert later.failure is RotationFailure.TOKEN_REUSE_DETECTED


def test_reuse_is_checked_before_device_binding(db, principal):
    service = RotationService()
    pair = _login(db, principal)
    _rotate(service, db, pair.refresh_token)
    _age_rotation(db, pair.refresh_token, 60)

    result = _rotate(service, db, pair.refresh_token, FIREFOX_WINDOWS)

    assert result.failure is RotationFailure.TOKEN_REUSE_DETECTED
    assert _alerts(db, "device_mismatch") == []


def test_missing_request_fingerprint_skips_device_binding(db, principal):
    service = RotationService()
    pair = _login(db, principal)
    result = service.rotate(db, pair.refresh_token)
    assert result.ok


@pytest.mark.parametrize("token_factory", [
    lambda principal: "not-a-token",
    lambda principal: create_access_token({"sub": principal.id, "email": principal.email}),
    lambda principal: create_refresh_token({"sub": principal.id}, family_id="never-stored"),
    lambda principal: "",
])
def test_invalid_credentials(db, principal, token_factory):
    result = RotationService().rotate(db, token_factory(principal))
    assert result.failure is RotationFailure.INVALID_CREDENTIAL
    assert db.query(RefreshToken).count() == 0


def test_expired_refresh_token(db, principal):
    service = RotationService()
    pair = _login(db, principal)
    record = db.query(RefreshToken).one()
    record.expires_at = utcnow() - timedelta(seconds=1)
    db.commit()

    result = _rotate(service, db, pair.refresh_token)

    assert result.failure is RotationFailure.EXPIRED_CREDENTIAL
    assert db.query(RefreshToken).count() == 1


def test_unwrap_maps_failures_to_exceptions(db, principal):
    service = RotationService()
    pair = _login(db, principal)
    _rotate(service, db, pair.refresh_token)
    _age_rotation(db, pair.refresh_token, 60)

    with pytest.raises(TokenReuseDetectedError) as exc_info:
        _rotate(service, db, pair.refresh_token).unwrap()
    assert exc_info.value.details["code"] == "token_reuse_detected"


def test_concurrent_duplicates_fork_nothing(db, principal):
    service = RotationService()
    pair = _login(db, principal)
    barrier = threading.Barrier(2)
    results = []
    errors = []

    def worker():
        session = SessionLocal()
        try:
            barrier.wait()
            results.append(_rotate(service, session, pair.refresh_token))
        except Exception as exc:  # pragma: no cover - surfaced below
            errors.append(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert errors == []
    assert len(results) == 2
    assert all(r.ok for r in results)
    assert sorted(r.via_grace for r in results) == [False, True]
    assert results[0].pair.refresh_token == results[1].pair.refresh_token
    # Original plus exactly one successor.
    assert len(_family(db, pair.refresh_token)) == 2
    assert _alerts(db, "possible_reuse") == []


def test_losing_the_conditional_update_falls_into_grace(db, principal):
    service = RotationService()
    pair = _login(db, principal)

    # A second process loaded the record while it was still the chain head.
    stale = SessionLocal()
    try:
        stale_record = stale.query(RefreshToken).filter(RefreshToken.token == pair.refresh_token).one()
        stale_principal = stale.get(Principal, principal.id)

        winner = _rotate(service, db, pair.refresh_token)
        assert winner.ok

        loser = service._advance_chain(
            stale, stale_record, stale_principal, CHROME_MAC, "10.0.0.1", F1,
        )
    finally:
        stale.close()

    assert loser.ok
    assert loser.via_grace is True
    assert loser.pair.refresh_token == winner.pair.refresh_token
    assert len(_family(db, pair.refresh_token)) == 2


def test_rotation_without_descriptor_keeps_device_labels(db, principal):
    login = _login(db, principal)

    pair = RotationService().rotate(db, login.refresh_token).unwrap()

    head = db.query(RefreshToken).filter(RefreshToken.token == pair.refresh_token).one()
    assert head.device_info == CHROME_MAC
    assert head.ip_address == "10.0.0.1"
    assert head.device_fingerprint == F1
