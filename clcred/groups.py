"""Modular groups underlying the credential scheme.

Two groups are used:

* ``SchnorrGroup``: the order-Q subgroup of Z_P^*, of publicly known order.
  It carries pseudonyms and Pedersen commitments.
* ``QRSpecialRSA``: the quadratic residues modulo a special RSA modulus
  N = p*q with p, q safe primes. Its order p'q' is known only to whoever holds
  the factors. It carries the CL signatures.

Both expose the same group law (``mul``, ``exp``, ``inv``) so that proofs can
be written once over either of them.

Example:
    >>> G = new_schnorr_group_from_params(Bn(23), Bn(4), Bn(11))
    >>> G.exp(Bn(4), Bn(-1)) == G.inv(Bn(4))
    True
    >>> G.is_element_in_group(Bn(5))
    False
"""

import logging

from petlib.bn import Bn

import pytest

from .errors import GroupGenerationError, UnsupportedParameterSizeError

logger = logging.getLogger(__name__)

# Subgroup order bits -> modulus bits, as for DSA domain parameters.
SCHNORR_SIZES = {160: 1024, 224: 2048, 256: 2048}

_SMALL_PRIMES = [Bn(p) for p in (3, 5, 7, 11, 13, 17, 19, 23, 29, 31, 37, 41,
                                 43, 47, 53, 59, 61, 67, 71, 73, 79, 83, 89,
                                 97, 101, 103, 107, 109, 113, 127, 131, 137,
                                 139, 149, 151, 157, 163, 167, 173, 179, 181,
                                 191, 193, 197, 199, 211, 223, 227, 229, 233,
                                 239, 241, 251)]


def as_bn(num):
    """Coerces a native integer of any size, or a Bn, into a Bn.

    Example:
        >>> as_bn(2**100) == Bn(2).pow(100)
        True
    """
    if isinstance(num, Bn):
        return num
    if isinstance(num, int):
        return Bn.from_decimal(str(num))
    raise TypeError("Cannot coerce %r into a Bn." % (num,))


def pow2(bits):
    """Returns 2**bits as a Bn."""
    return Bn(2).pow(bits)


class BnRandom(object):
    """A source of cryptographically strong random big numbers.

    Every component that needs randomness takes one of these, so that
    randomness is an explicit capability rather than a global."""

    def below(self, bound):
        """Uniform random number in [0, bound)."""
        return as_bn(bound).random()

    def bits(self, n):
        """Uniform random number in [0, 2**n)."""
        return pow2(n).random()

    def prime(self, bits, safe=False):
        """A random prime of the given bit length, optionally a safe prime."""
        return Bn.get_prime(bits, 1 if safe else 0)


class ModularGroup(object):
    """Group law modulo a fixed modulus, shared by the concrete groups."""

    @property
    def modulus(self):
        raise NotImplementedError()

    @property
    def order(self):
        raise NotImplementedError()

    def add(self, x, y):
        """Computes x + y mod the modulus."""
        return as_bn(x).mod_add(as_bn(y), self.modulus)

    def mul(self, x, y):
        """Computes x * y mod the modulus."""
        return as_bn(x).mod_mul(as_bn(y), self.modulus)

    def exp(self, base, exponent):
        """Computes base^exponent mod the modulus. Negative exponents are
        supported: the base is raised to |exponent| and then inverted."""
        base, exponent = as_bn(base), as_bn(exponent)
        if exponent < 0:
            return self.inv(base.mod_pow(-exponent, self.modulus))
        return base.mod_pow(exponent, self.modulus)

    def inv(self, x):
        """Computes the inverse of x mod the modulus.

        Raises:
            ValueError: if x is not invertible.
        """
        try:
            return as_bn(x).mod_inverse(self.modulus)
        except Exception:  # pylint: disable=broad-except
            raise ValueError("%s has no inverse modulo %s" % (x, self.modulus))

    def div(self, x, y):
        """Computes x * y^-1 mod the modulus."""
        return self.mul(x, self.inv(y))

    def _in_range(self, x):
        return isinstance(x, (Bn, int)) and 0 < x < self.modulus


class SchnorrGroup(ModularGroup):
    """A cyclic subgroup of prime order Q of Z_P^*, generated by G.

    The constructor performs no validation: Q must divide P - 1 and G must
    have order Q.
    """

    __slots__ = ["P", "G", "Q"]

    def __init__(self, P, G, Q):
        self.P = as_bn(P)
        self.G = as_bn(G)
        self.Q = as_bn(Q)

    @property
    def modulus(self):
        return self.P

    @property
    def order(self):
        return self.Q

    def random_element(self, rng=None):
        """Returns a uniformly random element of the order-Q subgroup."""
        rng = rng or BnRandom()
        return self.exp(self.G, rng.below(self.Q))

    def is_element_in_group(self, x):
        """True iff 0 < x < P and x^Q = 1 mod P."""
        if not self._in_range(x):
            return False
        return self.exp(x, self.Q) == 1

    def __eq__(self, other):
        return isinstance(other, SchnorrGroup) and \
            (self.P, self.G, self.Q) == (other.P, other.G, other.Q)

    def __ne__(self, other):
        return not self == other

    def __hash__(self):
        return hash((self.P, self.G, self.Q))

    def __repr__(self):
        return "SchnorrGroup(P=%d bits, Q=%d bits)" % (
            self.P.num_bits(), self.Q.num_bits())


class QRSpecialRSA(ModularGroup):
    """The group of quadratic residues modulo N = p * q, where p = 2p' + 1 and
    q = 2q' + 1 are safe primes.

    Built with only N, the instance computes in the group without knowing
    its order. Built with the factors (issuer side), ``order`` is p'q' and
    ``random_generator`` is available.
    """

    __slots__ = ["N", "p", "q"]

    def __init__(self, N, p=None, q=None):
        self.N = as_bn(N)
        self.p = as_bn(p) if p is not None else None
        self.q = as_bn(q) if q is not None else None

    @property
    def modulus(self):
        return self.N

    @property
    def p_prime(self):
        return (self.p - 1) // 2

    @property
    def q_prime(self):
        return (self.q - 1) // 2

    @property
    def order(self):
        if self.p is None:
            return None
        return self.p_prime * self.q_prime

    def public(self):
        """The same group, without the factorization of N."""
        return QRSpecialRSA(self.N)

    def is_element_in_group(self, x):
        """Without the factors: 0 < x < N and x is invertible. With the
        factors: additionally x is a quadratic residue modulo p and q."""
        if not self._in_range(x):
            return False
        try:
            self.inv(x)
        except ValueError:
            return False

        if self.p is None:
            return True

        x = as_bn(x)
        return (x % self.p).mod_pow(self.p_prime, self.p) == 1 and \
            (x % self.q).mod_pow(self.q_prime, self.q) == 1

    def random_generator(self, rng=None):
        """Returns a random generator of QR_N. Requires the factors."""
        if self.p is None:
            raise ValueError("A generator of QR_N can only be drawn knowing the factors of N")

        rng = rng or BnRandom()
        while True:
            h = rng.below(self.N)
            x = self.mul(h, h)
            if not self.is_element_in_group(x):
                continue
            # QR_N is cyclic of order p'q', x generates it unless its order is p' or q'
            if self.exp(x, self.p_prime) != 1 and self.exp(x, self.q_prime) != 1:
                return x

    def __eq__(self, other):
        return isinstance(other, QRSpecialRSA) and self.N == other.N

    def __ne__(self, other):
        return not self == other

    def __hash__(self):
        return hash(self.N)

    def __repr__(self):
        return "QRSpecialRSA(N=%d bits)" % self.N.num_bits()


def _passes_sieve(x):
    for p in _SMALL_PRIMES:
        if x % p == 0:
            return x == p
    return True


def generate_schnorr_params(p_bits, q_bits, rng=None, max_attempts=None):
    """Generates DSA-style domain parameters (P, G, Q): Q a q_bits prime,
    P = kQ + 1 a p_bits prime, and G = h^k mod P of order Q.

    Raises:
        GroupGenerationError: if no prime P is found within max_attempts.
    """
    rng = rng or BnRandom()
    if max_attempts is None:
        max_attempts = 100 * p_bits

    Q = rng.prime(q_bits)
    two = Bn(2)

    # k is drawn so that P = kQ + 1 has exactly p_bits bits
    k_low = pow2(p_bits - 1) // Q + 1
    k_span = pow2(p_bits) // Q - k_low

    for _ in range(max_attempts):
        k = k_low + rng.below(k_span)
        if k.is_odd():
            k = k + 1
        P = k * Q + 1
        if P.num_bits() != p_bits or not _passes_sieve(P) or not P.is_prime():
            continue

        h = two
        while True:
            G = h.mod_pow(k, P)
            if G != 1:
                logger.debug("Generated Schnorr parameters with %d bit P, %d bit Q",
                             p_bits, q_bits)
                return P, G, Q
            h = h + 1

    raise GroupGenerationError(
        "no %d bit prime P = kQ + 1 found in %d attempts" % (p_bits, max_attempts))


def new_schnorr_group(q_bit_length, rng=None):
    """Generates a random SchnorrGroup whose subgroup order Q has q_bit_length
    bits. Supported sizes are 160, 224 and 256 (with moduli of 1024, 2048 and
    2048 bits).

    Raises:
        UnsupportedParameterSizeError: for any other size.
        GroupGenerationError: if the parameter generator fails.
    """
    if q_bit_length not in SCHNORR_SIZES:
        raise UnsupportedParameterSizeError(
            "generating Schnorr primes for bit length %d is not supported" % q_bit_length)

    try:
        P, G, Q = generate_schnorr_params(SCHNORR_SIZES[q_bit_length], q_bit_length, rng)
    except GroupGenerationError:
        raise
    except Exception as e:  # pylint: disable=broad-except
        raise GroupGenerationError("Schnorr group generation failed: %s" % e)

    return SchnorrGroup(P, G, Q)


def new_schnorr_group_from_params(P, G, Q):
    """Builds a SchnorrGroup from agreed values. No validation is performed."""
    return SchnorrGroup(P, G, Q)


def new_qr_special_rsa(n_length, rng=None):
    """Generates QR_N for a fresh special RSA modulus N of n_length bits.
    The returned group knows the factors of N.

    Raises:
        GroupGenerationError: if prime generation fails.
    """
    rng = rng or BnRandom()
    try:
        p = rng.prime(n_length // 2, safe=True)
        q = rng.prime(n_length // 2, safe=True)
        while q == p:
            q = rng.prime(n_length // 2, safe=True)
    except Exception as e:  # pylint: disable=broad-except
        raise GroupGenerationError("safe prime generation failed: %s" % e)

    logger.debug("Generated special RSA modulus of %d bits", (p * q).num_bits())
    return QRSpecialRSA(p * q, p, q)


# --- TESTS ---

@pytest.fixture(scope="module")
def schnorr160():
    return new_schnorr_group(160)


def _tiny_group():
    # 23 = 2 * 11 + 1, 4 = 2^2 generates the quadratic residues
    return new_schnorr_group_from_params(Bn(23), Bn(4), Bn(11))


def test_as_bn():
    assert as_bn(7) == Bn(7)
    assert as_bn(-(2**80)) == -Bn(2).pow(80)
    x = Bn(5)
    assert as_bn(x) is x

    with pytest.raises(TypeError):
        as_bn("5")


def test_unsupported_size():
    with pytest.raises(UnsupportedParameterSizeError) as excinfo:
        new_schnorr_group(100)
    assert "100" in str(excinfo.value)


def test_generation_gives_up():
    with pytest.raises(GroupGenerationError):
        generate_schnorr_params(512, 160, max_attempts=0)


def test_schnorr_params(schnorr160):
    G = schnorr160
    assert G.P.num_bits() == 1024
    assert G.Q.num_bits() == 160
    assert (G.P - 1) % G.Q == 0
    assert G.exp(G.G, G.Q) == 1
    assert G.G != 1


def test_random_elements(schnorr160):
    G = schnorr160
    rng = BnRandom()
    for _ in range(1000):
        assert G.is_element_in_group(G.random_element(rng))


def test_mul_inv(schnorr160):
    G = schnorr160
    for _ in range(100):
        x = G.P.random()
        if x == 0:
            continue
        assert G.mul(x, G.inv(x)) == 1


def test_exp_negative(schnorr160):
    G = schnorr160
    for _ in range(50):
        b = G.random_element()
        e = G.P.random()
        assert G.mul(G.exp(b, e), G.exp(b, -e)) == 1

    b = G.P.random()
    assert G.mul(G.exp(b, -Bn(3)), G.exp(b, Bn(3))) == 1
    assert G.exp(b, 0) == 1


def test_tiny_group():
    G = _tiny_group()
    assert G.add(22, 2) == 1
    assert G.mul(5, 5) == 2
    assert G.exp(4, 11) == 1
    assert G.exp(4, -1) == 6
    assert G.is_element_in_group(Bn(4))
    assert G.is_element_in_group(Bn(1))
    assert not G.is_element_in_group(Bn(5))
    assert not G.is_element_in_group(Bn(0))
    assert not G.is_element_in_group(Bn(27))

    with pytest.raises(ValueError):
        G.inv(Bn(0))
    with pytest.raises(ValueError):
        G.inv(Bn(46))


def test_from_params_unchecked():
    # No validation on this path: 24 is not even prime
    G = new_schnorr_group_from_params(24, 2, 5)
    assert G.P == 24
    assert G == new_schnorr_group_from_params(Bn(24), Bn(2), Bn(5))


def test_qr_tiny():
    # 23 = 2 * 11 + 1, 47 = 2 * 23 + 1
    G = QRSpecialRSA(23 * 47, 23, 47)
    assert G.order == 11 * 23
    assert G.public().order is None

    x = G.random_generator()
    assert G.exp(x, G.order) == 1
    assert G.exp(x, 11) != 1
    assert G.exp(x, 23) != 1

    assert G.is_element_in_group(Bn(4))
    assert not G.is_element_in_group(Bn(5))
    assert not G.is_element_in_group(Bn(23))
    assert G.public().is_element_in_group(Bn(5))
    assert not G.public().is_element_in_group(Bn(47))

    with pytest.raises(ValueError):
        G.public().random_generator()


def test_qr_generated():
    G = new_qr_special_rsa(256)
    assert G.p.is_prime() and G.p_prime.is_prime()
    assert G.q.is_prime() and G.q_prime.is_prime()
    assert G.N.num_bits() in (255, 256)

    S = G.random_generator()
    assert G.is_element_in_group(S)
    assert G.exp(S, G.order) == 1
    r = G.order.random()
    assert G.div(G.exp(S, r + 1), G.exp(S, r)) == S
