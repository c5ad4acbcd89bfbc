## An engine for non-interactive Zero-Knowledge Proofs of knowledge of
#  discrete log representations, using Brands' and Camenisch's extensions
#  to the basic Schnorr proof, in multiplicative modular groups.
#
#  Each proof obligation states that a public element is a product of
#  bases raised to secret exponents, within a given group. Secrets are
#  either reduced modulo the (prover-known) order of their group, or are
#  integers whose witnesses are drawn from a range wide enough to hide
#  them statistically: the latter may be shared between groups of
#  different, or unknown, order.

import logging
import re
from hashlib import sha256, sha384, sha512

from petlib.bn import Bn

import pytest

from .groups import BnRandom, as_bn, new_qr_special_rsa, new_schnorr_group

logger = logging.getLogger(__name__)

_HASHES = {256: sha256, 384: sha384, 512: sha512}


def challenge(elements, hash_bit_len=256):
    """Packages a challenge in a bijective way"""
    elem = [len(elements)] + elements
    elem_str = map(str, elem)
    elem_len = map(lambda x: "%s||%s" % (len(x), x), elem_str)
    state = "|".join(elem_len)
    H = _HASHES[hash_bit_len]()
    H.update(state.encode("utf8"))
    return H.digest()


class Val(object):
    """A common ancestor for all values"""

    def val(self, env):
        return env[self.name]

    def render(self):
        return self.name


class ConstPub(Val):
    """Defines a public value from the environment"""

    def __init__(self, zkp, name):
        self.name = name
        self.zkp = zkp
        assert name not in zkp.Const
        zkp.Const[name] = self


class Sec(Val):
    """Defines a secret value of the prover.

    With ``bits`` set the secret is an integer: witnesses are drawn from
    [0, 2^bits) and responses are not reduced. Otherwise the responses are
    reduced modulo the order of the group the secret is used in.
    """

    def __init__(self, zkp, name, bits=None):
        self.name = name
        self.zkp = zkp
        self.bits = bits
        assert name not in zkp.Sec
        zkp.Sec[name] = self


class Gen(object):
    """A group element built from constants and exponents"""

    def __init__(self, zkp, prove=False, construction=None):
        self.name = None
        self.zkp = zkp
        self.prove = prove
        self.construction = construction

    def get_repr(self):
        if self.name or self.construction[0] == "Gen^":
            return [self]
        elif self.construction[0] == "Gen*":
            return self.construction[1:]

        raise Exception("Unknown Gen type")

    def __mul__(self, other):
        assert isinstance(other, Gen)
        assert self.zkp == other.zkp
        assert self.prove == other.prove

        c = ["Gen*"] + self.get_repr() + other.get_repr()
        return Gen(self.zkp, prove=self.prove, construction=c)

    def __pow__(self, other):
        assert isinstance(other, Val)
        assert not self.prove
        assert self.zkp == other.zkp

        prove = isinstance(other, Sec)
        if self.construction and self.construction[0] == "Gen^":
            c = self.construction + [other]
        else:
            c = ["Gen^", self, other]

        return Gen(self.zkp, construction=c, prove=prove)

    def secrets(self):
        """The secrets this expression is built from"""
        if self.name:
            return []

        if self.construction[0] == "Gen*":
            return [s for v in self.construction[1:] for s in v.secrets()]

        return [v for v in self.construction[2:] if isinstance(v, Sec)]

    def label(self):
        return self.name or self.construction[0]

    def render(self):
        if self.name:
            return self.name

        if self.construction[0] == "Gen*":
            return " * ".join(v.render() for v in self.construction[1:])

        exps = " * ".join(v.render() for v in self.construction[2:])
        if len(self.construction) > 3:
            exps = "(%s)" % exps
        return "%s^%s" % (self.construction[1].render(), exps)

    def val(self, env, group):
        """Returns the value of this element in the group"""

        ## In case of a named value just return it.
        if self.name:
            return env[self.name]

        ## In case of a "*" multiply all parts
        if self.construction[0] == "Gen*":
            Prod = 1
            for v in self.construction[1:]:
                Prod = group.mul(Prod, v.val(env, group))
            return Prod

        if self.construction[0] == "Gen^":
            base = self.construction[1].val(env, group)
            exps = [v.val(env) for v in self.construction[2:]]
            Prod = 1
            for v in exps:
                Prod = as_bn(v) * Prod
            return group.exp(base, Prod)

        raise Exception("Unknown case")


class ConstGen(Gen):
    """Represents a group element constant in the environment"""

    def __init__(self, zkp, name):
        Gen.__init__(self, zkp)

        self.name = name
        assert name not in self.zkp.Const
        self.zkp.Const[name] = self


class ZKProof(object):
    """A class representing a number of associated ZK Proofs."""

    def __init__(self, hash_bit_len=256):
        """Define a proof object. Obligations may live in different groups,
        the challenge has hash_bit_len bits."""

        assert hash_bit_len in _HASHES
        self.hash_bit_len = hash_bit_len

        self.Const = {}
        self.Sec = {}
        self.proofs = []

        self.arrays = {}

    def add_proof(self, lhs, rhs, group):
        """Adds a proof obligation to show the rhs is the representation of
        the lhs in the group"""
        assert isinstance(lhs, Gen)
        assert lhs.prove == False
        assert isinstance(rhs, Gen)
        assert rhs.prove == True
        assert self == lhs.zkp == rhs.zkp

        self.proofs.append((lhs, rhs, group))

    def render_proof_statement(self):
        """A plain text rendering of the statement, for inspection."""
        lines = []
        if self.Const:
            lines += ["Constants: %s" % ", ".join(sorted(self.Const))]

        lines += ["NIZK{(%s):" % ", ".join(sorted(self.Sec))]
        formulas = ["    %s = %s  in %r" % (base.render(), expr.render(), group)
                    for base, expr, group in self.proofs]
        lines += [" /\\\n".join(formulas) + "}"]
        return "\n".join(lines)

    def _check_name_ok(self, name):
        return re.match("^[a-zA-Z][a-zA-Z0-9_]*$", name) is not None

    def get(self, vtype, name, ignore_check=False, **kwargs):
        """Returns a number of proof variables of a certain type"""
        assert vtype in [ConstGen, Sec, ConstPub]

        if isinstance(name, str):
            assert self._check_name_ok(name) or ignore_check
            return self._get(vtype, name, **kwargs)

        if isinstance(name, list):
            assert all(map(self._check_name_ok, name)) or ignore_check
            return [self._get(vtype, n, **kwargs) for n in name]

        raise Exception("Wrong type of names: str or list(str)")

    def _get(self, vtype, name, **kwargs):
        assert isinstance(name, str)

        for D in [self.Const, self.Sec]:
            if name in D:
                assert isinstance(D[name], vtype)
                return D[name]

        return vtype(self, name, **kwargs)

    def get_array(self, vtype, name, number, start=0, **kwargs):
        """Returns an array of variables"""
        assert vtype in [ConstGen, Sec, ConstPub]
        assert isinstance(name, str)
        assert self._check_name_ok(name)

        if name in self.arrays:
            assert self.arrays[name] == (number, start)
        else:
            self.arrays[name] = (number, start)

        names = ["%s[%i]" % (name, i) for i in range(start, start + number)]
        return self.get(vtype, names, True, **kwargs)

    def all_vars(self):
        variables = list(self.Const) + list(self.Sec)
        return set(variables)

    def _check_env(self, env):
        variables = self.all_vars()

        for v in variables:
            if v not in env:
                raise Exception("Could not find variable %s in the environment.\n%s" % (repr(v), repr(variables)))

    def _secret_orders(self):
        """Maps each order-reduced secret to the order of its group."""
        orders = {}
        for _, expr, group in self.proofs:
            for s in expr.secrets():
                if s.bits is not None:
                    continue

                if group.order is None:
                    raise Exception("Secret '%s' is used in a group of unknown order." % s.name)
                if orders.setdefault(s.name, group.order) != group.order:
                    raise Exception("Secret '%s' is used in groups of different orders." % s.name)
        return orders

    def _public_state(self, env, message):
        state = ['ZKP', message]

        for _, _, group in self.proofs:
            state += [group.modulus]
        for v in sorted(self.Const.keys()):
            state += [env[v]]
        return state

    def build_proof(self, env, message="", rng=None):
        """Generates a proof within an environment of assigned public and secret variables."""

        self._check_env(env)

        # Do sanity check on the proofs
        if __debug__:
            for base, expr, group in self.proofs:
                if base.val(env, group) != expr.val(env, group):
                    raise Exception("Proof about '%s' does not hold." % base.label())

        rng = rng or BnRandom()
        orders = self._secret_orders()

        ## Make a list of all the public state
        state = self._public_state(env, message)

        ## Set witnesses for all secrets
        witnesses = dict(env.items())
        for w, sec in self.Sec.items():
            if sec.bits is not None:
                witnesses[w] = rng.bits(sec.bits)
            else:
                witnesses[w] = rng.below(orders[w])

        ## Compute the first message and add it to the state
        for base, expr, group in self.proofs:
            Cw = expr.val(witnesses, group)
            state += [Cw]

        ## Compute the challenge using all the state
        hash_c = challenge(state, self.hash_bit_len)
        c = Bn.from_binary(hash_c)

        ## Compute all the responses
        responses = dict(env.items())
        for w, sec in self.Sec.items():
            responses[w] = witnesses[w] + c * as_bn(env[w])
            if sec.bits is None:
                responses[w] = responses[w] % orders[w]

        for v in self.Const:
            del responses[v]

        return (c, responses)

    def verify_proof(self, env, sig, message="", strict=True):
        """Verifies a proof within an environment of assigned public only variables."""

        ## Select the constants for the env
        env_l = [(k, v) for k, v in env.items() if k in self.Const]

        if strict:
            env_not = [k for k, v in env.items() if k not in self.Const]
            if len(env_not):
                raise Exception("Did not check: " + (", ".join(env_not)))

        c, responses = sig
        if not isinstance(c, (Bn, int)) or isinstance(c, bool) or not isinstance(responses, dict):
            logger.debug("Proof challenge or responses of the wrong type")
            return False
        responses = dict(list(responses.items()) + env_l)

        ## Ensure all variables we need are here
        missing = self.all_vars() - set(responses)
        if missing:
            logger.debug("Proof lacks responses for %s", ", ".join(sorted(missing)))
            return False

        for v in self.Sec:
            if not isinstance(responses[v], (Bn, int)):
                logger.debug("Response for '%s' is not a number", v)
                return False

        ## Integer responses must not be longer than their witnesses allow
        for w, sec in self.Sec.items():
            if sec.bits is not None and as_bn(responses[w]).num_bits() > sec.bits + 1:
                logger.debug("Response for '%s' exceeds %d bits", w, sec.bits + 1)
                return False

        ## Make a list of all the public state
        state = self._public_state(responses, message)

        ## Compute the first message and add it to the state
        try:
            for base, expr, group in self.proofs:
                Cr = expr.val(responses, group)
                Cx = base.val(responses, group)
                Cw = group.mul(Cr, group.exp(Cx, -c))
                state += [Cw]
        except ValueError:
            logger.debug("Proof responses are not invertible in their group")
            return False

        ## Compute the challenge using all the state
        hash_c = challenge(state, self.hash_bit_len)
        c_prime = Bn.from_binary(hash_c)

        ## Check equality
        if c != c_prime:
            logger.debug("Challenge mismatch")
            return False
        return True


class ZKEnv(object):
    """ A class that passes all the ZK environment
        state to the proof or verification.
    """

    def __init__(self, zkp):
        """ Initializes and ties to a specific proof. """
        ## Watch out for recursive calls, given we
        #  redefined __setattr__
        object.__setattr__(self, "zkp", zkp)
        object.__setattr__(self, "env", {})

    def __setattr__(self, name, value):
        """ Store into a special dictionary """
        if isinstance(value, list):
            assert name in self.zkp.arrays
            number, start = self.zkp.arrays[name]
            assert len(value) == number

            for i, v in enumerate(value):
                n = "%s[%i]" % (name, start + i)
                self._set_var(n, v)

        else:
            self._set_var(name, value)

    def _set_var(self, name, value):
        if name not in self.zkp.all_vars():
            raise Exception("Variable name '%s' not known." % name)
        self.env[name] = value

    def __getattr__(self, name):
        if name not in self.zkp.all_vars():
            raise Exception("Variable name '%s' not known." % name)
        return self.env[name]

    def get(self):
        """ Get the environement. """
        return self.env


# --- TESTS ---

@pytest.fixture(scope="module")
def group():
    return new_schnorr_group(160)


def pedersen_proof(G):
    zk = ZKProof()
    g, h = zk.get(ConstGen, ["g", "h"])
    x, o = zk.get(Sec, ["x", "o"])
    Cxo = zk.get(ConstGen, "Cxo")
    zk.add_proof(Cxo, g ** x * h ** o, G)
    return zk


def test_basic():
    zk = ZKProof()

    g = zk.get(ConstGen, "g")

    # Test: ok to call twice
    g2 = zk.get(ConstGen, "g")
    # return same object
    assert g == g2

    # Test: need to be of same type!
    with pytest.raises(AssertionError):
        zk.get(Sec, "g")

    h = zk.get(ConstGen, "h")
    x = zk.get(Sec, "x")
    o = zk.get(Sec, "o", bits=100)
    y = zk.get(ConstPub, "y")
    Cx = zk.get(ConstGen, "Cx")

    Cxp = g ** x * (h ** y) ** o
    zk.add_proof(Cx, Cxp, None)

    assert set(zk.Const) == {"g", "h", "y", "Cx"}
    assert set(zk.Sec) == {"x", "o"}
    assert [s.name for s in Cxp.secrets()] == ["x", "o"]
    assert zk.Sec["o"].bits == 100

    xs = zk.get_array(Sec, "xi", 3, 1)
    assert [v.name for v in xs] == ["xi[1]", "xi[2]", "xi[3]"]


def test_pedersen(group):
    G = group
    zk = pedersen_proof(G)

    # A concrete Pedersen commitment
    g = G.G
    h = G.random_element()
    x, o = G.Q.random(), G.Q.random()
    Cxo = G.mul(G.exp(g, x), G.exp(h, o))

    env = ZKEnv(zk)
    env.g, env.h = g, h
    env.Cxo = Cxo
    env.x = x
    env.o = o
    sig = zk.build_proof(env.get(), message="session")

    # Responses of order-reduced secrets stay below the order
    c, responses = sig
    assert 0 <= responses["x"] < G.Q
    assert c.num_bits() <= 256

    env = ZKEnv(zk)
    env.g, env.h = g, h
    env.Cxo = Cxo
    assert zk.verify_proof(env.get(), sig, message="session")
    assert not zk.verify_proof(env.get(), sig, message="other session")

    # Malformed challenge or responses fail the check without raising
    assert not zk.verify_proof(env.get(), ("junk", responses), message="session")
    assert not zk.verify_proof(env.get(), (None, responses), message="session")
    assert not zk.verify_proof(env.get(), (c, "junk"), message="session")
    assert not zk.verify_proof(env.get(), (c, dict(responses, x="junk")), message="session")

    env.Cxo = G.mul(Cxo, g)
    assert not zk.verify_proof(env.get(), sig, message="session")


def test_env_missing(group):
    G = group
    zk = pedersen_proof(G)

    g, h = G.G, G.random_element()
    x, o = G.Q.random(), G.Q.random()

    env = ZKEnv(zk)
    env.g, env.h = g, h
    env.Cxo = G.mul(G.exp(g, x), G.exp(h, o))
    env.x = x

    with pytest.raises(Exception) as excinfo:
        env.NOTEXISTING = x
    assert "Variable name 'NOTEXISTING' not known" in str(excinfo.value)

    ## Ensure we catch missing variables
    with pytest.raises(Exception) as excinfo:
        zk.build_proof(env.get())
    assert 'Could not find variable' in str(excinfo.value)

    ## Ensure we catch false statements
    env.o = o + 1
    with pytest.raises(Exception) as excinfo:
        zk.build_proof(env.get())
    assert "Proof about 'Cxo' does not hold" in str(excinfo.value)

    ## Ensure the verifier is not handed secrets
    env.o = o
    sig = zk.build_proof(env.get())
    with pytest.raises(Exception) as excinfo:
        zk.verify_proof(env.get(), sig)
    assert "Did not check" in str(excinfo.value)


def test_equality_across_groups(group):
    G = group
    QR = new_qr_special_rsa(256)
    S = QR.random_generator()
    QR = QR.public()

    zk = ZKProof()
    g, s, A, B = zk.get(ConstGen, ["g", "s", "A", "B"])
    x = zk.get(Sec, "x", bits=160 + 80 + 256)
    zk.add_proof(A, g ** x, G)
    zk.add_proof(B, s ** x, QR)

    xv = G.Q.random()
    env = ZKEnv(zk)
    env.g, env.s = G.G, S
    env.A, env.B = G.exp(G.G, xv), QR.exp(S, xv)
    env.x = xv
    sig = zk.build_proof(env.get(), message=42)

    env = ZKEnv(zk)
    env.g, env.s = G.G, S
    env.A, env.B = G.exp(G.G, xv), QR.exp(S, xv)
    assert zk.verify_proof(env.get(), sig, message=42)

    # Same element in one group, a different exponent in the other
    env.B = QR.exp(S, xv + 1)
    assert not zk.verify_proof(env.get(), sig, message=42)

    # Oversized responses are rejected before any group operation
    env.B = QR.exp(S, xv)
    c, responses = sig
    responses = dict(responses)
    responses["x"] = responses["x"] + Bn(2).pow(160 + 80 + 256 + 2)
    assert not zk.verify_proof(env.get(), (c, responses), message=42)
    assert not zk.verify_proof(env.get(), (c, {"x": "junk"}), message=42)


def test_unknown_order():
    QR = new_qr_special_rsa(256)
    S = QR.random_generator()

    zk = ZKProof()
    s, B = zk.get(ConstGen, ["s", "B"])
    d = zk.get(Sec, "d")
    zk.add_proof(B, s ** d, QR.public())

    dv = QR.order.random()
    env = ZKEnv(zk)
    env.s, env.B, env.d = S, QR.exp(S, dv), dv
    with pytest.raises(Exception) as excinfo:
        zk.build_proof(env.get())
    assert "unknown order" in str(excinfo.value)

    # The prover knowing the order may reduce; the verifier does not need it
    zk_prover = ZKProof()
    s, B = zk_prover.get(ConstGen, ["s", "B"])
    d = zk_prover.get(Sec, "d")
    zk_prover.add_proof(B, s ** d, QR)
    sig = zk_prover.build_proof(env.get())

    env = ZKEnv(zk)
    env.s, env.B = S, QR.exp(S, dv)
    assert zk.verify_proof(env.get(), sig)


def test_public_exponents(group):
    # Y * g^-k = g^x, with k a public (negative) exponent
    G = group
    zk = ZKProof()
    g, Y = zk.get(ConstGen, ["g", "Y"])
    minus_k = zk.get(ConstPub, "minus_k")
    x = zk.get(Sec, "x")
    zk.add_proof(Y * g ** minus_k, g ** x, G)

    xv, k = G.Q.random(), Bn(1000)
    env = ZKEnv(zk)
    env.g = G.G
    env.Y = G.exp(G.G, xv + k)
    env.minus_k = -k
    env.x = xv
    sig = zk.build_proof(env.get())

    env = ZKEnv(zk)
    env.g = G.G
    env.Y = G.exp(G.G, xv + k)
    env.minus_k = -k
    assert zk.verify_proof(env.get(), sig)

    env.minus_k = -(k + 1)
    assert not zk.verify_proof(env.get(), sig)


def test_render():
    zk = pedersen_proof(None)
    s = zk.render_proof_statement()
    assert "Constants: Cxo, g, h" in s
    assert "NIZK{(o, x):" in s
    assert "Cxo = g^x * h^o" in s
