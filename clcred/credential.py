"""Messages exchanged between the credential manager and the organization."""

import pytest

from .errors import CapacityError, IndexRangeError
from .groups import as_bn, pow2


class Message(object):
    """Base of protocol messages: a fixed list of FIELDS, passed to the
    constructor in that order."""

    FIELDS = []

    def fields(self):
        return [getattr(self, f) for f in self.FIELDS]

    def __eq__(self, other):
        return type(self) == type(other) and self.fields() == other.fields()

    def __ne__(self, other):
        return not self == other

    def __repr__(self):
        return "%s(%s)" % (type(self).__name__, ", ".join(self.FIELDS))


class Proof(Message):
    """A non-interactive proof: the challenge c and the responses."""

    FIELDS = ["c", "responses"]

    def __init__(self, c, responses):
        self.c = c
        self.responses = responses

    def sig(self):
        return (self.c, self.responses)


class AProof(Proof):
    """Proof that A = Q^(1/e) was computed with the issuer's secret key,
    bound to the nonce the user sent with the credential request."""

    pass


class PresentationProof(Proof):
    """Selective disclosure proof for a randomized credential, bound to the
    verifier's nonce. Carries the sizes of the attribute partition."""

    FIELDS = ["c", "responses", "nonce", "known_num", "committed_num", "hidden_num"]

    def __init__(self, c, responses, nonce, known_num, committed_num, hidden_num):
        Proof.__init__(self, c, responses)
        self.nonce = nonce
        self.known_num = known_num
        self.committed_num = committed_num
        self.hidden_num = hidden_num


class CredentialRequest(Message):
    """Everything the issuer needs to sign: the pseudonym, the known
    attributes, commitments to the committed attributes, U (binding the master
    secret, committed and hidden attributes), and the proof that all of these
    are well formed. ``nonce_org`` is the issue nonce handed out by the
    organization, ``nonce`` the user's own nonce for the issuer's AProof."""

    FIELDS = ["nym", "known_attrs", "commitments_of_attrs", "U", "hidden_num",
              "proof", "nonce", "nonce_org"]

    def __init__(self, nym, known_attrs, commitments_of_attrs, U, hidden_num,
                 proof, nonce, nonce_org):
        self.nym = nym
        self.known_attrs = list(known_attrs)
        self.commitments_of_attrs = list(commitments_of_attrs)
        self.U = U
        self.hidden_num = hidden_num
        self.proof = proof
        self.nonce = nonce
        self.nonce_org = nonce_org


class Credential(Message):
    """A CL signature (A, e, v): Z = A^e * S^v * prod R_i^m_i mod N. As issued,
    v lacks the user's share v1."""

    FIELDS = ["A", "e", "v"]

    def __init__(self, A, e, v):
        self.A = A
        self.e = e
        self.v = v


class RandomizedCredential(Message):
    """A' = A * S^r for a fresh r, shown in place of A."""

    FIELDS = ["A"]

    def __init__(self, A):
        self.A = A


def check_attributes(attrs, max_num, bits, kind):
    """Coerces attributes to Bn, checking there are at most max_num of them
    and that each lies in [0, 2^bits).

    Raises:
        CapacityError
    """
    attrs = [as_bn(a) for a in attrs]
    if len(attrs) > max_num:
        raise CapacityError("%d %s attributes given, at most %d allowed" % (len(attrs), kind, max_num))

    bound = pow2(bits)
    for a in attrs:
        if not 0 <= a < bound:
            raise CapacityError("%s attribute %s does not fit in %d bits" % (kind, a, bits))
    return attrs


def check_indices(indices, size, kind):
    """Checks a reveal index set against a partition of the given size.

    Raises:
        IndexRangeError: on an index outside [0, size) or a repeated index.
    """
    indices = list(indices)
    for i in indices:
        if isinstance(i, bool) or not isinstance(i, int) or not 0 <= i < size:
            raise IndexRangeError("%s attribute index %r outside [0, %d)" % (kind, i, size))

    if len(set(indices)) != len(indices):
        raise IndexRangeError("repeated %s attribute index in %r" % (kind, indices))
    return indices


# --- TESTS ---

def test_check_attributes():
    assert check_attributes([1, 2], 2, 8, "known") == [as_bn(1), as_bn(2)]
    assert check_attributes([], 0, 8, "hidden") == []

    with pytest.raises(CapacityError) as excinfo:
        check_attributes([1, 2, 3], 2, 8, "known")
    assert "at most 2" in str(excinfo.value)

    with pytest.raises(CapacityError):
        check_attributes([256], 2, 8, "known")
    with pytest.raises(CapacityError):
        check_attributes([-1], 2, 8, "known")


def test_check_indices():
    assert check_indices({1, 2}, 4, "known") == [1, 2]
    assert check_indices([], 0, "committed") == []

    for bad in ([4], [-1], [True], ["1"], [1, 1]):
        with pytest.raises(IndexRangeError):
            check_indices(bad, 4, "known")


def test_message_equality():
    assert Credential(1, 2, 3) == Credential(1, 2, 3)
    assert Credential(1, 2, 3) != Credential(1, 2, 4)
    assert Proof(1, {}) != AProof(1, {})
    assert AProof(1, {"x": 2}).sig() == (1, {"x": 2})
    assert repr(RandomizedCredential(5)) == "RandomizedCredential(A)"
