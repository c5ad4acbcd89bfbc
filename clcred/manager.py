"""The user side of the scheme: requests credentials, checks what the issuer
returns, and proves possession of credentials while revealing only chosen
attributes.

Example:

    >>> org = new_org()                                                  # doctest: +SKIP
    >>> ms = org.pub_key.generate_user_master_secret()                   # doctest: +SKIP
    >>> cm = CredentialManager(org.params, org.pub_key, ms, [7], [9], [11])  # doctest: +SKIP
    >>> req = cm.get_credential_request(org.get_credential_issue_nonce())    # doctest: +SKIP
    >>> credential, a_proof = org.issue_credential(req)                  # doctest: +SKIP
    >>> cm.verify_credential(credential, a_proof)                        # doctest: +SKIP
    True
"""

import logging

from petlib.bn import Bn

import pytest

from .credential import Credential, CredentialRequest, PresentationProof, Proof, \
    RandomizedCredential, check_attributes, check_indices
from .errors import CapacityError, CLError, IndexRangeError, MalformedInputError, \
    MembershipError, NonceReuseError, ProofVerificationError, UnboundNymError, \
    UnverifiedCredentialError
from .groups import BnRandom, as_bn, pow2
from .org import new_org, new_org_from_params
from .params import default_params
from .proofs import a_statement, presentation_statement, request_statement, \
    set_presentation_publics, set_request_publics
from .zkp import ZKEnv

logger = logging.getLogger(__name__)


class CredentialManager(object):
    """Holds a user's master secret, attributes and pseudonym with one
    organization, and the credential once issued."""

    def __init__(self, params, pub_key, master_secret, known_attrs, committed_attrs,
                 hidden_attrs, rng=None):
        self._setup(params, pub_key, master_secret, known_attrs, committed_attrs,
                    hidden_attrs, rng)

        pedersen = pub_key.pedersen
        self.nym, self.nym_randomness = pedersen.commit(self.master_secret, self.rng)
        self.v1 = self.rng.bits(params.v1_bits)
        self.cred_req_nonce = self.rng.bits(params.nonce_bit_len)

        commitments = [pedersen.commit(m, self.rng) for m in self.committed_attrs]
        self.commitments_of_attrs = [c for c, _ in commitments]
        self.commitments_randomness = [r for _, r in commitments]

        self.U = self._compute_u()

    def _setup(self, params, pub_key, master_secret, known_attrs, committed_attrs,
               hidden_attrs, rng):
        self.params = params
        self.pub_key = pub_key
        self.rng = rng or BnRandom()

        self.master_secret = as_bn(master_secret)
        if not 0 <= self.master_secret < pub_key.pedersen.group.Q:
            raise CapacityError("master secret outside [0, Q) of the pseudonym group")

        p = params
        self.known_attrs = check_attributes(known_attrs, p.known_attrs_num, p.attr_bit_len, "known")
        self.committed_attrs = check_attributes(committed_attrs, p.committed_attrs_num,
                                                p.attr_bit_len, "committed")
        self.hidden_attrs = check_attributes(hidden_attrs, p.hidden_attrs_num,
                                             p.attr_bit_len, "hidden")
        self.credential = None

    @classmethod
    def from_existing(cls, nym, v1, cred_req_nonce, params, pub_key, master_secret,
                      known_attrs, committed_attrs, hidden_attrs, commitments_of_attrs,
                      rng=None):
        """Rebuilds a manager whose credential request was made earlier, to
        verify, update and present the credential it obtained. The result
        cannot make a new credential request."""
        manager = cls.__new__(cls)
        manager._setup(params, pub_key, master_secret, known_attrs, committed_attrs,
                       hidden_attrs, rng)

        if len(commitments_of_attrs) != len(manager.committed_attrs):
            raise MalformedInputError("%d commitments for %d committed attributes" % (
                len(commitments_of_attrs), len(manager.committed_attrs)))

        manager.nym = as_bn(nym)
        manager.nym_randomness = None
        manager.v1 = as_bn(v1)
        manager.cred_req_nonce = as_bn(cred_req_nonce)
        manager.commitments_of_attrs = [as_bn(c) for c in commitments_of_attrs]
        manager.commitments_randomness = None
        manager.U = manager._compute_u()
        return manager

    def _compute_u(self):
        G, pub = self.pub_key.qr, self.pub_key
        U = G.mul(G.exp(pub.S, self.v1), G.exp(pub.R0, self.master_secret))
        for R, m in zip(pub.rs_committed, self.committed_attrs):
            U = G.mul(U, G.exp(R, m))
        for R, m in zip(pub.rs_hidden, self.hidden_attrs):
            U = G.mul(U, G.exp(R, m))
        return U

    def _attributes_product(self):
        # R0^ms * prod R^m over all attributes
        G, pub = self.pub_key.qr, self.pub_key
        Prod = G.mul(G.exp(pub.R0, self.master_secret), pub.known_product(self.known_attrs))
        for R, m in zip(pub.rs_committed, self.committed_attrs):
            Prod = G.mul(Prod, G.exp(R, m))
        for R, m in zip(pub.rs_hidden, self.hidden_attrs):
            Prod = G.mul(Prod, G.exp(R, m))
        return Prod

    def get_credential_request(self, nonce_org):
        """Builds a credential request bound to the organization's issue
        nonce.

        Raises:
            MembershipError: if the nym, a commitment or U is outside its group.
        """
        if self.nym_randomness is None:
            raise CLError("a manager rebuilt from an existing credential cannot request a new one")

        sg = self.pub_key.pedersen.group
        for x in [self.nym] + self.commitments_of_attrs:
            if not sg.is_element_in_group(x):
                raise MembershipError("nym or commitment outside the Schnorr group")
        if not self.pub_key.qr.is_element_in_group(self.U):
            raise MembershipError("U is not invertible modulo N")

        hidden_num = len(self.hidden_attrs)
        zk = request_statement(self.params, self.pub_key, len(self.committed_attrs), hidden_num)
        env = ZKEnv(zk)
        set_request_publics(env, self.pub_key, self.nym, self.commitments_of_attrs, self.U, hidden_num)
        env.ms = self.master_secret
        env.v1 = self.v1
        env.r_nym = self.nym_randomness
        env.mc = self.committed_attrs
        env.rc = self.commitments_randomness
        env.mh = self.hidden_attrs

        c, responses = zk.build_proof(env.get(), message=nonce_org, rng=self.rng)

        return CredentialRequest(self.nym, self.known_attrs, self.commitments_of_attrs, self.U,
                                 hidden_num, Proof(c, responses), self.cred_req_nonce, nonce_org)

    def verify_credential(self, credential, a_proof):
        """Checks a credential returned by the issuer, and stores it on
        success. The stored credential carries the full v = v'' + v1.

        Returns:
            True if e is a prime in range, the signature equation holds and
            the AProof verifies, False otherwise.
        """
        p, pub, G = self.params, self.pub_key, self.pub_key.qr
        A, e = credential.A, as_bn(credential.e)

        e_start = pow2(p.e_bit_len - 1)
        if not e_start <= e <= e_start + pow2(p.e1_bit_len - 1) or not e.is_prime():
            logger.warning("Credential rejected: e is not a prime in the expected interval")
            return False

        if not G.is_element_in_group(A):
            logger.warning("Credential rejected: A is not invertible modulo N")
            return False

        v = as_bn(credential.v) + self.v1
        if G.mul(G.mul(G.exp(A, e), G.exp(pub.S, v)), self._attributes_product()) != pub.Z:
            logger.warning("Credential rejected: the signature equation does not hold")
            return False

        Q = G.div(pub.Z, G.mul(G.mul(G.exp(pub.S, credential.v), self.U),
                               pub.known_product(self.known_attrs)))
        zk = a_statement(p, G)
        env = ZKEnv(zk)
        env.Q, env.A = Q, A
        if not zk.verify_proof(env.get(), a_proof.sig(), message=self.cred_req_nonce):
            logger.warning("Credential rejected: the AProof does not verify")
            return False

        self.credential = Credential(A, e, v)
        return True

    def update_credential(self, new_known_attrs):
        """Replaces the known attributes locally. The credential held so far
        no longer matches them: verify the one the organization re-issues.

        Returns:
            A fresh nonce to send along with the update; the AProof of the
            re-issued credential must be bound to it.
        """
        p = self.params
        self.known_attrs = check_attributes(new_known_attrs, p.known_attrs_num, p.attr_bit_len, "known")
        self.credential = None
        self.cred_req_nonce = self.rng.bits(p.nonce_bit_len)
        return self.cred_req_nonce

    def build_credential_proof(self, credential, revealed_known_idx, revealed_committed_idx, nonce):
        """Randomizes the stored credential and proves possession of it,
        revealing the known and committed attributes at the given indices.

        Returns:
            A (RandomizedCredential, PresentationProof) pair.

        Raises:
            UnverifiedCredentialError: if credential was not verified first.
            IndexRangeError: for an index outside its partition.
        """
        stored = self.credential
        if stored is None or (credential.A, credential.e) != (stored.A, stored.e):
            raise UnverifiedCredentialError("credential was not verified by this manager")

        counts = (len(self.known_attrs), len(self.committed_attrs), len(self.hidden_attrs))
        known_idx = check_indices(revealed_known_idx, counts[0], "known")
        committed_idx = check_indices(revealed_committed_idx, counts[1], "committed")
        known = dict((i, self.known_attrs[i]) for i in known_idx)
        committed = dict((j, self.committed_attrs[j]) for j in committed_idx)

        p, pub, G = self.params, self.pub_key, self.pub_key.qr
        r_A = self.rng.bits(p.n_length + p.sec_param)
        A = G.mul(stored.A, G.exp(pub.S, r_A))
        e_prime = stored.e - pow2(p.e_bit_len - 1)
        v_prime = stored.v - stored.e * r_A

        zk = presentation_statement(p, pub, *counts, revealed_known=known, revealed_committed=committed)
        env = ZKEnv(zk)
        set_presentation_publics(env, p, pub, A, *counts,
                                 revealed_known=known, revealed_committed=committed)
        env.e_prime, env.v_prime = e_prime, v_prime
        env.ms = self.master_secret
        env.mh = self.hidden_attrs
        for i, m in enumerate(self.known_attrs):
            if i not in known:
                setattr(env, "mk%d" % i, m)
        for j, m in enumerate(self.committed_attrs):
            if j not in committed:
                setattr(env, "mc%d" % j, m)

        c, responses = zk.build_proof(env.get(), message=nonce, rng=self.rng)
        return RandomizedCredential(A), PresentationProof(c, responses, nonce, *counts)


# --- TESTS ---

@pytest.fixture(scope="module")
def org():
    return new_org(default_params())


def _issue(org, known, committed, hidden):
    ms = org.pub_key.generate_user_master_secret()
    cm = CredentialManager(org.params, org.pub_key, ms, known, committed, hidden)
    req = cm.get_credential_request(org.get_credential_issue_nonce())
    credential, a_proof = org.issue_credential(req)
    return cm, req, credential, a_proof


def test_issue_update_prove(org):
    known, committed, hidden = [7, 6, 5, 22], [9, 17], [11, 13, 19]
    cm, req, credential, a_proof = _issue(org, known, committed, hidden)
    assert cm.verify_credential(credential, a_proof)

    new_known = [17, 18, 19, 27]
    update_nonce = cm.update_credential(new_known)
    credential1, a_proof1 = org.update_credential(cm.nym, update_nonce, new_known)
    assert cm.verify_credential(credential1, a_proof1)

    # A verifier that only holds the public key
    verifier = new_org_from_params(org.params, org.pub_key)

    nonce = verifier.get_prove_credential_nonce()
    randomized, proof = cm.build_credential_proof(credential1, [1, 2], [0], nonce)
    assert verifier.prove_credential(randomized, proof, [1, 2], [0], [18, 19], [9])

    nonce = verifier.get_prove_credential_nonce()
    randomized, proof = cm.build_credential_proof(credential1, [1, 2], [0], nonce)
    assert not verifier.prove_credential(randomized, proof, [1, 2], [0], [18, 20], [9])

    nonce = verifier.get_prove_credential_nonce()
    randomized, proof = cm.build_credential_proof(credential1, [1, 2], [0], nonce)
    assert not verifier.prove_credential(randomized, proof, [1, 2], [0], [18, 19], [10])


def test_old_credential_after_update(org):
    cm, req, credential, a_proof = _issue(org, [1, 2], [], [])
    assert cm.verify_credential(credential, a_proof)

    cm.update_credential([1, 3])
    with pytest.raises(UnverifiedCredentialError):
        cm.build_credential_proof(credential, [], [], Bn(1))

    # The old signature does not match the new attributes
    assert not cm.verify_credential(credential, a_proof)


def test_reveal_nothing_and_everything(org):
    cm, _, credential, a_proof = _issue(org, [1, 2], [3], [4])
    assert cm.verify_credential(credential, a_proof)

    nonce = org.get_prove_credential_nonce()
    randomized, proof = cm.build_credential_proof(credential, [], [], nonce)
    assert org.prove_credential(randomized, proof, [], [], [], [])

    nonce = org.get_prove_credential_nonce()
    randomized, proof = cm.build_credential_proof(credential, [1, 0], [0], nonce)
    assert org.prove_credential(randomized, proof, [1, 0], [0], [2, 1], [3])


def test_nonce_replay(org):
    cm, req, credential, a_proof = _issue(org, [1], [2], [3])
    assert cm.verify_credential(credential, a_proof)

    # Issue nonces are single use
    with pytest.raises(NonceReuseError):
        org.issue_credential(req)

    # Prove nonces are single use, and must have been handed out
    nonce = org.get_prove_credential_nonce()
    randomized, proof = cm.build_credential_proof(credential, [0], [], nonce)
    assert org.prove_credential(randomized, proof, [0], [], [1], [])
    with pytest.raises(NonceReuseError):
        org.prove_credential(randomized, proof, [0], [], [1], [])

    randomized, proof = cm.build_credential_proof(credential, [0], [], Bn(12345))
    with pytest.raises(NonceReuseError):
        org.prove_credential(randomized, proof, [0], [], [1], [])

    # A proof bound to one nonce does not verify under another
    nonce1, nonce2 = org.get_prove_credential_nonce(), org.get_prove_credential_nonce()
    randomized, proof = cm.build_credential_proof(credential, [0], [], nonce1)
    proof.nonce = nonce2
    assert not org.prove_credential(randomized, proof, [0], [], [1], [])


def test_update_nonce_binding(org):
    cm, req, credential, a_proof = _issue(org, [1], [], [])

    # The nonce of the original request is already used
    with pytest.raises(NonceReuseError):
        org.update_credential(cm.nym, req.nonce, [2])
    with pytest.raises(UnboundNymError):
        org.update_credential(org.pub_key.pedersen.group.G, Bn(1), [2])

    update_nonce = cm.update_credential([2])
    credential1, a_proof1 = org.update_credential(cm.nym, update_nonce, [2])
    assert cm.verify_credential(credential1, a_proof1)

    # Each update nonce is signed once
    with pytest.raises(NonceReuseError):
        org.update_credential(cm.nym, update_nonce, [5])

    # The AProof is bound to the nonce the manager drew
    update_nonce = cm.update_credential([3])
    credential2, a_proof2 = org.update_credential(cm.nym, update_nonce + 1, [3])
    assert not cm.verify_credential(credential2, a_proof2)

    # A re-created issuer keeps updating, and remembers the used nonces
    issuer = new_org_from_params(org.params, org.pub_key, org.sec_key,
                                 records=org.receiver_records)
    with pytest.raises(NonceReuseError):
        issuer.update_credential(cm.nym, update_nonce + 1, [3])
    credential3, a_proof3 = issuer.update_credential(cm.nym, update_nonce, [3])
    assert cm.verify_credential(credential3, a_proof3)


def test_issuer_rejects_bad_requests(org):
    ms = org.pub_key.generate_user_master_secret()
    cm = CredentialManager(org.params, org.pub_key, ms, [1], [2], [3])
    G, S = org.pub_key.qr, org.pub_key.S

    req = cm.get_credential_request(org.get_credential_issue_nonce())
    req.U = G.mul(req.U, G.exp(S, 2))
    with pytest.raises(ProofVerificationError):
        org.issue_credential(req)

    req = cm.get_credential_request(org.get_credential_issue_nonce())
    req.proof.c = "junk"
    with pytest.raises(ProofVerificationError):
        org.issue_credential(req)

    req = cm.get_credential_request(org.get_credential_issue_nonce())
    req.proof = "proof"
    with pytest.raises(ProofVerificationError):
        org.issue_credential(req)

    # (P-1)^Q = -1 mod P for odd Q
    P = org.pub_key.pedersen.group.P
    req = cm.get_credential_request(org.get_credential_issue_nonce())
    req.nym = P - 1
    with pytest.raises(MembershipError):
        org.issue_credential(req)

    req = cm.get_credential_request(org.get_credential_issue_nonce())
    req.commitments_of_attrs = [P]
    with pytest.raises(MembershipError):
        org.issue_credential(req)

    req = cm.get_credential_request(org.get_credential_issue_nonce())
    req.U = G.N
    with pytest.raises(MembershipError):
        org.issue_credential(req)

    # The manager still gets a credential for an untampered request
    req = cm.get_credential_request(org.get_credential_issue_nonce())
    assert cm.verify_credential(*org.issue_credential(req))

    # A non-numeric challenge in the AProof is a failed check
    credential, a_proof = org.issue_credential(cm.get_credential_request(org.get_credential_issue_nonce()))
    a_proof.c = "junk"
    assert not cm.verify_credential(credential, a_proof)


def test_rebuilt_issuer_and_manager(org):
    known, committed, hidden = [7, 6, 5, 22], [9, 17], [11, 13, 19]
    cm, req, credential, a_proof = _issue(org, known, committed, hidden)
    assert cm.verify_credential(credential, a_proof)

    # Both sides restart from what they persisted
    issuer = new_org_from_params(org.params, org.pub_key, org.sec_key,
                                 records=org.receiver_records)
    restored = CredentialManager.from_existing(
        cm.nym, cm.v1, cm.cred_req_nonce, org.params, org.pub_key, cm.master_secret,
        known, committed, hidden, cm.commitments_of_attrs)

    new_known = [17, 18, 19, 27]
    update_nonce = restored.update_credential(new_known)
    credential1, a_proof1 = issuer.update_credential(restored.nym, update_nonce, new_known)
    assert restored.verify_credential(credential1, a_proof1)

    verifier = new_org_from_params(org.params, org.pub_key)
    nonce = verifier.get_prove_credential_nonce()
    randomized, proof = restored.build_credential_proof(credential1, [1, 2], [0], nonce)
    assert verifier.prove_credential(randomized, proof, [1, 2], [0], [18, 19], [9])


def test_unlinkability(org):
    cm, _, credential, a_proof = _issue(org, [1, 2], [3], [4])
    assert cm.verify_credential(credential, a_proof)

    shown = []
    for _ in range(2):
        nonce = org.get_prove_credential_nonce()
        randomized, proof = cm.build_credential_proof(credential, [0], [], nonce)
        assert org.prove_credential(randomized, proof, [0], [], [1], [])
        shown.append((randomized, proof))

    (r1, p1), (r2, p2) = shown
    assert r1.A != r2.A
    assert r1.A != credential.A
    assert p1.c != p2.c
    assert all(p1.responses[k] != p2.responses[k] for k in p1.responses)


def test_tampered_credential(org):
    cm, req, credential, a_proof = _issue(org, [1], [2], [3])

    bad = Credential(credential.A, credential.e, credential.v + 1)
    assert not cm.verify_credential(bad, a_proof)

    bad = Credential(credential.A, credential.e + 2, credential.v)
    assert not cm.verify_credential(bad, a_proof)

    c, responses = a_proof.sig()
    bad_proof = type(a_proof)(c + 1, responses)
    assert not cm.verify_credential(credential, bad_proof)

    with pytest.raises(UnverifiedCredentialError):
        cm.build_credential_proof(credential, [], [], Bn(1))

    assert cm.verify_credential(credential, a_proof)
    with pytest.raises(IndexRangeError):
        cm.build_credential_proof(credential, [1], [], Bn(1))
    with pytest.raises(IndexRangeError):
        cm.build_credential_proof(credential, [], [-1], Bn(1))


def test_capacity(org):
    pub, params = org.pub_key, org.params
    ms = pub.generate_user_master_secret()

    with pytest.raises(CapacityError):
        CredentialManager(params, pub, ms, [1] * 5, [], [])
    with pytest.raises(CapacityError):
        CredentialManager(params, pub, ms, [], [1] * 3, [])
    with pytest.raises(CapacityError):
        CredentialManager(params, pub, ms, [], [], [1] * 4)
    with pytest.raises(CapacityError):
        CredentialManager(params, pub, ms, [2 ** 256], [], [])
    with pytest.raises(CapacityError):
        CredentialManager(params, pub, pub.pedersen.group.Q, [], [], [])

    cm = CredentialManager(params, pub, ms, [1], [], [])
    with pytest.raises(CapacityError):
        cm.update_credential([1] * 5)


def test_from_existing(org):
    known, committed, hidden = [7, 6], [9], [11]
    cm, req, credential, a_proof = _issue(org, known, committed, hidden)

    restored = CredentialManager.from_existing(
        cm.nym, cm.v1, cm.cred_req_nonce, org.params, org.pub_key, cm.master_secret,
        known, committed, hidden, cm.commitments_of_attrs)
    assert restored.U == cm.U
    assert restored.verify_credential(credential, a_proof)

    nonce = org.get_prove_credential_nonce()
    randomized, proof = restored.build_credential_proof(credential, [0], [0], nonce)
    assert org.prove_credential(randomized, proof, [0], [0], [7], [9])

    with pytest.raises(CLError):
        restored.get_credential_request(org.get_credential_issue_nonce())
    with pytest.raises(MalformedInputError):
        CredentialManager.from_existing(
            cm.nym, cm.v1, cm.cred_req_nonce, org.params, org.pub_key, cm.master_secret,
            known, committed, hidden, [])


def test_request_membership(org):
    ms = org.pub_key.generate_user_master_secret()
    cm = CredentialManager(org.params, org.pub_key, ms, [1], [2], [])
    cm.commitments_of_attrs = [Bn(0)]
    with pytest.raises(MembershipError):
        cm.get_credential_request(org.get_credential_issue_nonce())
