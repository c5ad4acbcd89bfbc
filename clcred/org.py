"""The organization: issues, updates and verifies credentials.

An ``Org`` holds only the public key. It hands out nonces and verifies
presentations. An ``IssuerOrg`` additionally holds the secret key, and
issues and updates credentials.
"""

import logging
import threading
from collections import OrderedDict

from petlib.bn import Bn

import pytest

from .credential import AProof, Credential, Message, PresentationProof, Proof, \
    RandomizedCredential, check_attributes, check_indices
from .errors import CapacityError, MalformedInputError, MembershipError, \
    NonceReuseError, ProofVerificationError, UnboundNymError
from .groups import BnRandom, as_bn, pow2
from .keys import generate_key_pair
from .params import Params
from .proofs import a_statement, presentation_statement, request_statement, \
    set_presentation_publics, set_request_publics
from .zkp import ZKEnv

logger = logging.getLogger(__name__)

MAX_OUTSTANDING_NONCES = 1024


def _short(x):
    return "%s..." % as_bn(x).hex()[:16]


class NonceStore(object):
    """Single-use nonces. Each nonce is accepted once; at most max_outstanding
    unused nonces are remembered, the oldest being forgotten first."""

    def __init__(self, bits, max_outstanding=MAX_OUTSTANDING_NONCES, rng=None):
        self.bits = bits
        self.max_outstanding = max_outstanding
        self.rng = rng or BnRandom()
        self._lock = threading.Lock()
        self._outstanding = OrderedDict()

    def issue(self):
        with self._lock:
            nonce = self.rng.bits(self.bits)
            while nonce in self._outstanding:
                nonce = self.rng.bits(self.bits)
            self._outstanding[nonce] = True

            while len(self._outstanding) > self.max_outstanding:
                self._outstanding.popitem(last=False)
        return nonce

    def consume(self, nonce):
        """Marks the nonce as used.

        Raises:
            NonceReuseError: if the nonce was never issued, was already used,
                or was forgotten.
        """
        if not isinstance(nonce, (Bn, int)) or isinstance(nonce, bool):
            raise NonceReuseError("nonce %r is not a number" % (nonce,))

        with self._lock:
            try:
                del self._outstanding[as_bn(nonce)]
            except KeyError:
                raise NonceReuseError("nonce %s was not issued or was already used" % _short(nonce))

    def __len__(self):
        return len(self._outstanding)


class ReceiverRecord(Message):
    """What the issuer remembers about a nym: its known attributes, U from the
    request, and the user nonces already signed for it (at issuance and at
    each update). A nonce is signed at most once per nym."""

    FIELDS = ["known_attrs", "U", "used_nonces"]

    def __init__(self, known_attrs, U, used_nonces=None):
        self.known_attrs = list(known_attrs)
        self.U = U
        self.used_nonces = list(used_nonces or [])


class Org(object):
    """An organization holding only the public key."""

    def __init__(self, params, pub_key, rng=None, max_outstanding_nonces=MAX_OUTSTANDING_NONCES):
        if not pub_key.matches(params):
            raise ValueError("public key has fewer attribute bases than params require")

        self.params = params
        self.pub_key = pub_key
        self.rng = rng or BnRandom()
        self._issue_nonces = NonceStore(params.nonce_bit_len, max_outstanding_nonces, self.rng)
        self._prove_nonces = NonceStore(params.nonce_bit_len, max_outstanding_nonces, self.rng)

    def get_credential_issue_nonce(self):
        """A fresh nonce to bind the next credential request to."""
        nonce = self._issue_nonces.issue()
        logger.debug("Handed out issue nonce %s (%d outstanding)", _short(nonce), len(self._issue_nonces))
        return nonce

    def get_prove_credential_nonce(self):
        """A fresh nonce to bind the next presentation to."""
        nonce = self._prove_nonces.issue()
        logger.debug("Handed out prove nonce %s (%d outstanding)", _short(nonce), len(self._prove_nonces))
        return nonce

    def _check_counts(self, known_num, committed_num, hidden_num):
        p = self.params
        for num, max_num, kind in ((known_num, p.known_attrs_num, "known"),
                                   (committed_num, p.committed_attrs_num, "committed"),
                                   (hidden_num, p.hidden_attrs_num, "hidden")):
            if isinstance(num, bool) or not isinstance(num, int) or num < 0:
                raise MalformedInputError("%s attribute count %r is not a count" % (kind, num))
            if num > max_num:
                raise CapacityError("%d %s attributes, at most %d allowed" % (num, kind, max_num))

    def _revealed(self, indices, values, size, kind):
        indices = check_indices(indices, size, kind)
        values = list(values)
        if len(values) != len(indices):
            raise MalformedInputError("%d revealed %s values for %d indices" % (len(values), kind, len(indices)))
        values = check_attributes(values, len(indices), self.params.attr_bit_len, kind)
        return dict(zip(indices, values))

    def prove_credential(self, randomized_a, proof, revealed_known_idx, revealed_committed_idx,
                         revealed_known_attrs, revealed_committed_attrs):
        """Verifies a presentation of a RandomizedCredential (or its bare A
        value). The values of the revealed attributes are listed in the order
        of their indices.

        The nonce the proof is bound to is consumed whether or not the proof
        verifies.

        Returns:
            True if the proof verifies for the revealed values, False otherwise.

        Raises:
            MalformedInputError: for a proof of the wrong shape.
            IndexRangeError, CapacityError: for malformed reveal sets.
            NonceReuseError: if the proof's nonce is not an outstanding one.
            MembershipError: if randomized_a is outside the group.
        """
        if not isinstance(proof, PresentationProof) or not isinstance(proof.responses, dict) \
                or not isinstance(proof.c, (Bn, int)):
            raise MalformedInputError("not a presentation proof: %r" % (proof,))

        self._prove_nonces.consume(proof.nonce)

        counts = (proof.known_num, proof.committed_num, proof.hidden_num)
        self._check_counts(*counts)
        known = self._revealed(revealed_known_idx, revealed_known_attrs, proof.known_num, "known")
        committed = self._revealed(revealed_committed_idx, revealed_committed_attrs,
                                   proof.committed_num, "committed")

        if isinstance(randomized_a, RandomizedCredential):
            randomized_a = randomized_a.A
        if not self.pub_key.qr.is_element_in_group(randomized_a):
            raise MembershipError("randomized A is not an invertible element modulo N")

        zk = presentation_statement(self.params, self.pub_key, *counts,
                                    revealed_known=known, revealed_committed=committed)
        env = ZKEnv(zk)
        set_presentation_publics(env, self.params, self.pub_key, as_bn(randomized_a),
                                 *counts, revealed_known=known, revealed_committed=committed)

        if not zk.verify_proof(env.get(), proof.sig(), message=proof.nonce):
            logger.warning("Presentation rejected: proof does not verify for the revealed attributes")
            return False

        logger.info("Verified presentation revealing known %s and committed %s",
                    sorted(known), sorted(committed))
        return True


class IssuerOrg(Org):
    """An organization holding the secret key, able to issue and update
    credentials. ``records`` maps nyms to ``ReceiverRecord`` instances; pass a
    restored mapping to keep updating credentials issued earlier."""

    def __init__(self, params, pub_key, sec_key, records=None, rng=None,
                 max_outstanding_nonces=MAX_OUTSTANDING_NONCES):
        Org.__init__(self, params, pub_key, rng, max_outstanding_nonces)
        self.sec_key = sec_key
        self.group = sec_key.group(pub_key)
        self.receiver_records = {} if records is None else records
        self._records_lock = threading.Lock()

    def _random_e(self):
        # A prime in [2^(e_bit_len-1), 2^(e_bit_len-1) + 2^(e1_bit_len-1))
        p = self.params
        start = pow2(p.e_bit_len - 1)
        while True:
            e = start + self.rng.bits(p.e1_bit_len - 1)
            if e.is_odd() and e.is_prime():
                return e

    def _sign(self, U, known_attrs, nonce):
        p, G, pub = self.params, self.group, self.pub_key

        e = self._random_e()
        v11 = pow2(p.v_bit_len - 1) + self.rng.bits(p.v_bit_len - 1)

        Q = G.div(pub.Z, G.mul(G.mul(G.exp(pub.S, v11), U), pub.known_product(known_attrs)))
        e_inv = e.mod_inverse(G.order)
        A = G.exp(Q, e_inv)

        zk = a_statement(p, G)
        env = ZKEnv(zk)
        env.Q, env.A = Q, A
        env.e_inv = e_inv
        c, responses = zk.build_proof(env.get(), message=nonce, rng=self.rng)

        return Credential(A, e, v11), AProof(c, responses)

    def issue_credential(self, req):
        """Verifies a credential request and signs it.

        Returns:
            A (Credential, AProof) pair.

        Raises:
            NonceReuseError: if req.nonce_org is not an outstanding issue nonce.
            CapacityError, MalformedInputError: for a request of the wrong shape.
            MembershipError: if an element of the request is outside its group.
            ProofVerificationError: if the request proof does not verify.
        """
        self._issue_nonces.consume(req.nonce_org)

        p, pub = self.params, self.pub_key
        self._check_counts(len(req.known_attrs), len(req.commitments_of_attrs), req.hidden_num)
        known = check_attributes(req.known_attrs, p.known_attrs_num, p.attr_bit_len, "known")
        if not isinstance(req.nonce, (Bn, int)):
            raise MalformedInputError("request nonce %r is not a number" % (req.nonce,))

        sg = pub.pedersen.group
        for x in [req.nym] + req.commitments_of_attrs:
            if not sg.is_element_in_group(x):
                raise MembershipError("nym or commitment outside the Schnorr group")
        if not self.group.is_element_in_group(req.U):
            raise MembershipError("U is not a quadratic residue modulo N")

        zk = request_statement(p, pub, len(req.commitments_of_attrs), req.hidden_num)
        env = ZKEnv(zk)
        set_request_publics(env, pub, req.nym, req.commitments_of_attrs, req.U, req.hidden_num)

        if not isinstance(req.proof, Proof) or \
                not zk.verify_proof(env.get(), req.proof.sig(), message=req.nonce_org):
            logger.warning("Credential request of nym %s rejected: proof does not verify", _short(req.nym))
            raise ProofVerificationError("credential request proof does not verify")

        nym = as_bn(req.nym)
        if nym in self.receiver_records:
            logger.info("Re-issuing a credential to nym %s", _short(nym))

        credential, a_proof = self._sign(as_bn(req.U), known, req.nonce)
        with self._records_lock:
            self.receiver_records[nym] = ReceiverRecord(known, as_bn(req.U), [as_bn(req.nonce)])

        logger.info("Issued credential to nym %s", _short(nym))
        return credential, a_proof

    def update_credential(self, nym, nonce, new_known_attrs):
        """Re-signs the credential of nym over new known attributes. The
        nonce is a fresh one chosen by the user; the AProof is bound to it.
        It is consumed on first use, even if the attributes are then rejected.

        Returns:
            A (Credential, AProof) pair.

        Raises:
            UnboundNymError: if no credential was issued to nym.
            NonceReuseError: if nonce is not a number, or was already used
                for nym (at issuance or by an earlier update).
            CapacityError: for too many or oversized attributes.
        """
        record = self.receiver_records.get(as_bn(nym))
        if record is None:
            raise UnboundNymError("no credential was issued to nym %s" % _short(nym))
        if not isinstance(nonce, (Bn, int)) or isinstance(nonce, bool):
            raise NonceReuseError("update nonce %r is not a number" % (nonce,))

        nonce = as_bn(nonce)
        with self._records_lock:
            if nonce in record.used_nonces:
                logger.warning("Update of nym %s rejected: nonce already used", _short(nym))
                raise NonceReuseError("nonce already used for nym %s" % _short(nym))
            record.used_nonces.append(nonce)

        p = self.params
        known = check_attributes(new_known_attrs, p.known_attrs_num, p.attr_bit_len, "known")

        credential, a_proof = self._sign(record.U, known, nonce)
        record.known_attrs = known

        logger.info("Updated credential of nym %s", _short(nym))
        return credential, a_proof


def new_org(params=None, rng=None):
    """Creates an issuing organization with fresh keys.

    Raises:
        ValueError: if params are inconsistent.
        GroupGenerationError, UnsupportedParameterSizeError: if key
            generation fails.
    """
    params = params or Params()
    params.validate()
    pub_key, sec_key = generate_key_pair(params, rng)
    return IssuerOrg(params, pub_key, sec_key, rng=rng)


def new_org_from_params(params, pub_key, sec_key=None, records=None, rng=None):
    """Creates an organization from existing keys: a verifier-only ``Org``
    without sec_key, an ``IssuerOrg`` with it."""
    params.validate()
    if sec_key is None:
        return Org(params, pub_key, rng=rng)
    return IssuerOrg(params, pub_key, sec_key, records=records, rng=rng)


# --- TESTS ---

def test_nonce_store():
    store = NonceStore(80, max_outstanding=3)
    n1, n2 = store.issue(), store.issue()
    assert n1 != n2
    assert n1.num_bits() <= 80
    assert len(store) == 2

    store.consume(n1)
    with pytest.raises(NonceReuseError):
        store.consume(n1)

    # Never issued
    with pytest.raises(NonceReuseError):
        store.consume(n2 + 1)
    with pytest.raises(NonceReuseError):
        store.consume("nonce")

    # Oldest outstanding nonce is forgotten first
    n3, n4, n5 = store.issue(), store.issue(), store.issue()
    assert len(store) == 3
    with pytest.raises(NonceReuseError):
        store.consume(n2)
    for n in (n3, n4, n5):
        store.consume(n)
    assert len(store) == 0


def test_nonce_store_threads():
    store = NonceStore(80)
    issued = []

    def worker():
        for _ in range(100):
            issued.append(store.issue())

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(set(issued)) == 400
    assert len(store) == 400


@pytest.fixture(scope="module")
def small_org():
    return new_org(Params(rho_bit_len=160, n_length=512))


def test_new_org(small_org):
    org = small_org
    assert isinstance(org, IssuerOrg)
    assert org.group.order is not None
    assert org.pub_key.qr.order is None

    verifier = new_org_from_params(org.params, org.pub_key)
    assert type(verifier) is Org
    assert not hasattr(verifier, "issue_credential")

    with pytest.raises(ValueError):
        new_org(Params(hash_bit_len=512))


def test_random_e(small_org):
    p = small_org.params
    for _ in range(3):
        e = small_org._random_e()
        assert e.is_prime()
        assert pow2(p.e_bit_len - 1) <= e < pow2(p.e_bit_len - 1) + pow2(p.e1_bit_len - 1)


def test_sign(small_org):
    org = small_org
    G, pub = org.group, org.pub_key
    U = G.exp(pub.S, 12345)
    known = [as_bn(3), as_bn(4)]

    credential, _ = org._sign(U, known, as_bn(1))
    # Z = A^e * S^v'' * U * prod R^m
    rhs = G.mul(G.mul(G.exp(credential.A, credential.e), G.exp(pub.S, credential.v)),
                G.mul(U, pub.known_product(known)))
    assert rhs == pub.Z
    assert credential.v.num_bits() == org.params.v_bit_len


def test_update_unbound(small_org):
    with pytest.raises(UnboundNymError):
        small_org.update_credential(Bn(12345), Bn(1), [1])


def test_update_nonce_single_use(small_org):
    org = small_org
    G, pub = org.group, org.pub_key
    nym = Bn(777)
    org.receiver_records[nym] = ReceiverRecord([as_bn(1)], G.exp(pub.S, 99), [Bn(10)])

    # The issuance nonce is already used
    with pytest.raises(NonceReuseError):
        org.update_credential(nym, Bn(10), [2])
    with pytest.raises(NonceReuseError):
        org.update_credential(nym, "11", [2])

    credential, a_proof = org.update_credential(nym, Bn(11), [2])
    assert isinstance(a_proof, AProof)
    with pytest.raises(NonceReuseError):
        org.update_credential(nym, Bn(11), [3])

    # Consumed even when the attributes are rejected
    with pytest.raises(CapacityError):
        org.update_credential(nym, Bn(12), [1] * 10)
    with pytest.raises(NonceReuseError):
        org.update_credential(nym, Bn(12), [3])

    record = org.receiver_records[nym]
    assert record.used_nonces == [Bn(10), Bn(11), Bn(12)]
    assert record.known_attrs == [as_bn(2)]
    del org.receiver_records[nym]


def test_prove_credential_malformed(small_org):
    org = small_org

    def proof(known_num=4):
        return PresentationProof(Bn(1), {}, org.get_prove_credential_nonce(), known_num, 2, 3)

    with pytest.raises(MalformedInputError):
        org.prove_credential(Bn(4), "proof", [], [], [], [])
    with pytest.raises(CapacityError):
        org.prove_credential(Bn(4), proof(known_num=5), [], [], [], [])
    with pytest.raises(MalformedInputError):
        org.prove_credential(Bn(4), proof(), [1], [], [], [])
    with pytest.raises(MembershipError):
        org.prove_credential(Bn(0), proof(), [], [], [], [])

    # A bogus proof is rejected, and its nonce cannot be used again
    bogus = proof()
    assert not org.prove_credential(Bn(4), bogus, [1], [], [7], [])
    with pytest.raises(NonceReuseError):
        org.prove_credential(Bn(4), bogus, [1], [], [7], [])
