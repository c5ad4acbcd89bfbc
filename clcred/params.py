"""Sizes of the values used by the credential scheme.

The defaults follow the usual CL / idemix choices, with a 1024 bit special
RSA modulus. ``Params.validate`` checks the relations between the sizes that
the security of the signature and of the proofs rely on.
"""

import pytest

from .groups import SCHNORR_SIZES

HASH_SIZES = (256, 384, 512)


class Params(object):
    """Parameter sizes of the scheme.

    Args:
        rho_bit_len (int): bits of the order of the Schnorr group carrying
            pseudonyms and commitments (160, 224 or 256).
        n_length (int): bits of the special RSA modulus.
        known_attrs_num (int): maximum number of attributes known to both
            issuer and user.
        committed_attrs_num (int): maximum number of attributes of which the
            issuer sees only a commitment.
        hidden_attrs_num (int): maximum number of attributes known only to
            the user.
        attr_bit_len (int): bits of an attribute.
        hash_bit_len (int): bits of a Fiat-Shamir challenge.
        sec_param (int): statistical zero-knowledge security parameter.
        e_bit_len (int): bits of the signature primes e.
        e1_bit_len (int): width in bits of the interval the primes e are
            drawn from.
        v_bit_len (int): bits of the signature randomizers v.
    """

    FIELDS = ["rho_bit_len", "n_length", "known_attrs_num", "committed_attrs_num",
              "hidden_attrs_num", "attr_bit_len", "hash_bit_len", "sec_param",
              "e_bit_len", "e1_bit_len", "v_bit_len"]

    def __init__(self, rho_bit_len=256, n_length=1024, known_attrs_num=4,
                 committed_attrs_num=2, hidden_attrs_num=3, attr_bit_len=256,
                 hash_bit_len=256, sec_param=80, e_bit_len=597, e1_bit_len=120,
                 v_bit_len=2724):
        self.rho_bit_len = rho_bit_len
        self.n_length = n_length
        self.known_attrs_num = known_attrs_num
        self.committed_attrs_num = committed_attrs_num
        self.hidden_attrs_num = hidden_attrs_num
        self.attr_bit_len = attr_bit_len
        self.hash_bit_len = hash_bit_len
        self.sec_param = sec_param
        self.e_bit_len = e_bit_len
        self.e1_bit_len = e1_bit_len
        self.v_bit_len = v_bit_len

    # Witness sizes of the integer secrets in the proofs. Each exceeds the
    # size of challenge * secret by sec_param bits.

    @property
    def attr_witness_bits(self):
        return self.attr_bit_len + self.sec_param + self.hash_bit_len

    @property
    def v1_bits(self):
        return self.n_length + self.sec_param

    @property
    def v1_witness_bits(self):
        return self.n_length + 2 * self.sec_param + self.hash_bit_len

    @property
    def e_witness_bits(self):
        return self.e1_bit_len + self.sec_param + self.hash_bit_len

    @property
    def v_witness_bits(self):
        return self.v_bit_len + self.sec_param + self.hash_bit_len

    @property
    def nonce_bit_len(self):
        return self.sec_param

    def validate(self):
        """Checks the relations between sizes.

        Raises:
            ValueError: naming the first violated relation.
        """
        if self.rho_bit_len not in SCHNORR_SIZES:
            raise ValueError("rho_bit_len must be one of %s" % sorted(SCHNORR_SIZES))
        if self.hash_bit_len not in HASH_SIZES:
            raise ValueError("hash_bit_len must be one of %s" % (HASH_SIZES,))
        if self.rho_bit_len > self.attr_bit_len:
            raise ValueError("master secrets (rho_bit_len) must fit in attr_bit_len")
        if min(self.known_attrs_num, self.committed_attrs_num, self.hidden_attrs_num) < 0:
            raise ValueError("attribute counts must not be negative")
        if self.n_length % 2 or self.n_length < 256:
            raise ValueError("n_length must be even and at least 256")

        phi, H, m = self.sec_param, self.hash_bit_len, self.attr_bit_len
        if not self.e_bit_len > phi + H + max(m + 4, self.e1_bit_len + 2):
            raise ValueError("e_bit_len too small for attr_bit_len, e1_bit_len and hash_bit_len")
        if not self.v_bit_len > self.n_length + phi + H + max(m + phi + 3, phi + 2):
            raise ValueError("v_bit_len too small for n_length and attr_bit_len")
        return True

    def __eq__(self, other):
        return isinstance(other, Params) and \
            all(getattr(self, f) == getattr(other, f) for f in self.FIELDS)

    def __ne__(self, other):
        return not self == other

    def __repr__(self):
        return "Params(%s)" % ", ".join("%s=%s" % (f, getattr(self, f)) for f in self.FIELDS)


def default_params():
    """Default parameter sizes: 4 known, 2 committed and 3 hidden attributes."""
    return Params()


# --- TESTS ---

def test_default_params_valid():
    params = default_params()
    assert params.validate()
    assert params.known_attrs_num == 4
    assert params.committed_attrs_num == 2
    assert params.hidden_attrs_num == 3
    assert params == Params()
    assert params != Params(known_attrs_num=5)


def test_params_relations():
    with pytest.raises(ValueError) as excinfo:
        Params(hash_bit_len=512).validate()
    assert "e_bit_len" in str(excinfo.value)

    with pytest.raises(ValueError) as excinfo:
        Params(rho_bit_len=100).validate()
    assert "rho_bit_len" in str(excinfo.value)

    with pytest.raises(ValueError) as excinfo:
        Params(v_bit_len=1500).validate()
    assert "v_bit_len" in str(excinfo.value)

    with pytest.raises(ValueError):
        Params(n_length=1023).validate()
