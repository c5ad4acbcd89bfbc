"""Organization key material.

The public key holds the special RSA modulus, the generator S of QR_N, the
bases Z, R0 (for the master secret) and one R per attribute slot, and the
Pedersen parameters of the Schnorr group used for pseudonyms and attribute
commitments. The secret key is the factorization of N.
"""

import logging

import pytest

from .groups import BnRandom, QRSpecialRSA, new_qr_special_rsa, new_schnorr_group
from .params import Params
from .pedersen import PedersenParams

logger = logging.getLogger(__name__)


class PubKey(object):
    """Public key of a credential issuing organization."""

    FIELDS = ["qr", "S", "Z", "R0", "rs_known", "rs_committed", "rs_hidden", "pedersen"]

    def __init__(self, qr, S, Z, R0, rs_known, rs_committed, rs_hidden, pedersen):
        self.qr = qr
        self.S = S
        self.Z = Z
        self.R0 = R0
        self.rs_known = list(rs_known)
        self.rs_committed = list(rs_committed)
        self.rs_hidden = list(rs_hidden)
        self.pedersen = pedersen

    def generate_user_master_secret(self, rng=None):
        """A fresh master secret, uniform in [0, Q) of the pseudonym group."""
        rng = rng or BnRandom()
        return rng.below(self.pedersen.group.Q)

    def known_product(self, known_attrs):
        """Computes prod R_i^m_i over the known attributes."""
        G = self.qr
        Prod = 1
        for R, m in zip(self.rs_known, known_attrs):
            Prod = G.mul(Prod, G.exp(R, m))
        return Prod

    def matches(self, params):
        """True if the key has a base for every attribute slot of params."""
        return len(self.rs_known) >= params.known_attrs_num and \
            len(self.rs_committed) >= params.committed_attrs_num and \
            len(self.rs_hidden) >= params.hidden_attrs_num

    def __eq__(self, other):
        return isinstance(other, PubKey) and \
            all(getattr(self, f) == getattr(other, f) for f in self.FIELDS)

    def __ne__(self, other):
        return not self == other


class SecKey(object):
    """Secret key: the safe primes p and q with N = p * q."""

    FIELDS = ["p", "q"]

    def __init__(self, p, q):
        self.p = p
        self.q = q

    def group(self, pub_key):
        """QR_N of the public key, with its order available."""
        return QRSpecialRSA(pub_key.qr.N, self.p, self.q)

    def __eq__(self, other):
        return isinstance(other, SecKey) and (self.p, self.q) == (other.p, other.q)

    def __ne__(self, other):
        return not self == other


def generate_key_pair(params, rng=None):
    """Generates a fresh public / secret key pair for the given sizes.

    Raises:
        GroupGenerationError: if either group cannot be generated.
        UnsupportedParameterSizeError: if params.rho_bit_len is not supported.
    """
    rng = rng or BnRandom()

    qr = new_qr_special_rsa(params.n_length, rng)
    S = qr.random_generator(rng)

    def base():
        return qr.exp(S, rng.below(qr.order))

    Z, R0 = base(), base()
    rs_known = [base() for _ in range(params.known_attrs_num)]
    rs_committed = [base() for _ in range(params.committed_attrs_num)]
    rs_hidden = [base() for _ in range(params.hidden_attrs_num)]

    pedersen = PedersenParams.generate(new_schnorr_group(params.rho_bit_len, rng), rng)

    logger.debug("Generated organization keys: %r, %r", qr.public(), pedersen.group)
    pub_key = PubKey(qr.public(), S, Z, R0, rs_known, rs_committed, rs_hidden, pedersen)
    return pub_key, SecKey(qr.p, qr.q)


# --- TESTS ---

def test_key_pair():
    params = Params(rho_bit_len=160, n_length=512, known_attrs_num=2,
                    committed_attrs_num=1, hidden_attrs_num=0)
    pub, sec = generate_key_pair(params)

    assert pub.qr.order is None
    assert pub.matches(params)
    assert not pub.matches(Params(hidden_attrs_num=1))
    assert len(pub.rs_known) == 2 and len(pub.rs_hidden) == 0

    G = sec.group(pub)
    assert G.N == pub.qr.N
    for x in [pub.S, pub.Z, pub.R0] + pub.rs_known + pub.rs_committed:
        assert G.is_element_in_group(x)
        assert G.exp(x, G.order) == 1

    sg = pub.pedersen.group
    assert sg.Q.num_bits() == 160
    assert sg.is_element_in_group(pub.pedersen.H)

    ms = pub.generate_user_master_secret()
    assert 0 <= ms < sg.Q

    assert pub.known_product([]) == 1
    assert pub.known_product([3, 0]) == G.exp(pub.rs_known[0], 3)
