"""Pedersen commitments in a Schnorr group: C = G^m * H^r mod P.

Used for the user's pseudonym (a commitment to the master secret) and for
the committed attributes shown to the issuer.
"""

from petlib.bn import Bn

import pytest

from .groups import BnRandom, as_bn, new_schnorr_group_from_params


class PedersenParams(object):
    """A Schnorr group together with a second generator H.

    H is drawn by the issuer as G^r for a random r, so commitments are
    binding only if the issuer is honest and discards r. An issuer that
    keeps r can open a commitment to any value; hiding holds regardless."""

    __slots__ = ["group", "H"]

    def __init__(self, group, H):
        self.group = group
        self.H = as_bn(H)

    @staticmethod
    def generate(group, rng=None):
        """Draws a fresh H = G^r for the group; r is not kept."""
        H = group.random_element(rng)
        while H == 1:
            H = group.random_element(rng)
        return PedersenParams(group, H)

    def commit(self, m, rng=None):
        """Commits to m. Returns the commitment and its opening randomness."""
        rng = rng or BnRandom()
        r = rng.below(self.group.Q)
        return self.commit_with(m, r), r

    def commit_with(self, m, r):
        G = self.group
        return G.mul(G.exp(G.G, m), G.exp(self.H, r))

    def open(self, c, m, r):
        """True if (m, r) opens c."""
        return self.commit_with(m, r) == c

    def __eq__(self, other):
        return isinstance(other, PedersenParams) and \
            self.group == other.group and self.H == other.H

    def __ne__(self, other):
        return not self == other


# --- TESTS ---

def test_commit_open():
    G = new_schnorr_group_from_params(Bn(23), Bn(4), Bn(11))
    params = PedersenParams(G, Bn(9))

    c, r = params.commit(Bn(7))
    assert G.is_element_in_group(c)
    assert params.open(c, 7, r)
    assert not params.open(c, 8, r)
    assert params.commit_with(7, r) == c


def test_generate():
    G = new_schnorr_group_from_params(Bn(23), Bn(4), Bn(11))
    params = PedersenParams.generate(G)
    assert params.H != 1
    assert G.is_element_in_group(params.H)
    assert params == PedersenParams(G, params.H)


def test_issuer_trapdoor():
    # Whoever knows t with H = G^t opens a commitment to any value
    G = new_schnorr_group_from_params(Bn(23), Bn(4), Bn(11))
    t = Bn(3)
    params = PedersenParams(G, G.exp(G.G, t))

    c = params.commit_with(7, 2)
    # r' = r + (m - m') / t mod Q = 2 - 4 = 9 mod 11
    r1 = Bn(9)
    assert (t * r1) % G.Q == (t * Bn(2) + Bn(7) - Bn(8)) % G.Q
    assert params.open(c, 7, 2)
    assert params.open(c, 8, r1)
