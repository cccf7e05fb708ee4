import pytest

from webauth.keys import Keypair
from webauth.signers import (
    AccountSigners,
    Signer,
    SignerKind,
    Thresholds,
    dedupe_signers,
    verify_signer_weight,
)

A = Keypair.random().address
B = Keypair.random().address
C = Keypair.random().address


def test_two_of_two_requires_both():
    signers = [Signer(A, 1), Signer(B, 1)]

    only_a = verify_signer_weight(signers, 2, [(A, True)])
    assert not only_a.accepted
    assert only_a.weight == 1
    assert only_a.threshold == 2

    both = verify_signer_weight(signers, 2, [(A, True), (B, True)])
    assert both.accepted
    assert both.weight == 2
    assert set(both.counted) == {A, B}


def test_duplicate_presented_signer_counts_once():
    signers = [Signer(A, 1), Signer(B, 1)]
    res = verify_signer_weight(signers, 2, [(A, True), (A, True), (A, True)])
    assert not res.accepted
    assert res.weight == 1
    assert res.counted == (A,)


def test_invalid_and_unknown_signatures_ignored():
    signers = [Signer(A, 2)]
    res = verify_signer_weight(signers, 2, [(B, True), (A, False), (C, True), (A, True)])
    assert res.accepted
    assert res.weight == 2
    assert res.counted == (A,)


def test_signer_list_duplicates_take_max_weight():
    signers = [Signer(A, 1), Signer(A, 5), Signer(A, 3)]
    deduped = dedupe_signers(signers)
    assert deduped == [Signer(A, 5)]

    res = verify_signer_weight(signers, 5, [(A, True)])
    assert res.accepted
    assert res.weight == 5


def test_empty_signer_list_falls_back_to_subject():
    res = verify_signer_weight([], 0, [(A, True)], fallback_address=A)
    assert res.accepted
    assert res.weight == 1

    other = verify_signer_weight([], 0, [(B, True)], fallback_address=A)
    assert not other.accepted


def test_zero_threshold_still_needs_a_signature():
    res = verify_signer_weight([Signer(A, 1)], 0, [])
    assert not res.accepted
    assert res.threshold == 1


def test_zero_weight_signer_contributes_nothing():
    res = verify_signer_weight([Signer(A, 0), Signer(B, 1)], 1, [(A, True)])
    assert not res.accepted
    assert res.weight == 0


@pytest.mark.parametrize("kind", [SignerKind.PRE_AUTH_TX, SignerKind.HASH_X])
def test_hash_signers_cannot_countersign(kind):
    assert not kind.can_countersign
    res = verify_signer_weight([Signer(A, 10, kind)], 1, [(A, True)])
    assert not res.accepted


def test_plain_key_can_countersign():
    assert SignerKind.ED25519.can_countersign


def test_thresholds_for_class():
    th = Thresholds(low=1, medium=2, high=3)
    assert th.for_class("low") == 1
    assert th.for_class("medium") == 2
    assert th.for_class("high") == 3
    with pytest.raises(ValueError):
        th.for_class("payment")


def test_unfunded_account_is_its_own_signer():
    acct = AccountSigners.for_unfunded(A)
    assert not acct.exists
    assert acct.countersigners() == [Signer(A, 1)]
    assert acct.thresholds.medium == 0
