"""The three statements of the credential scheme, over the ``zkp`` engine.

Each ``*_statement`` function builds the statement shared by prover and
verifier; the matching ``set_*_publics`` function fills in the public values,
so that both sides hash exactly the same state. Provers then add their
secrets to the environment.
"""

import pytest

from .groups import pow2
from .zkp import ZKProof, ZKEnv, ConstGen, ConstPub, Sec


def request_statement(params, pub_key, committed_num, hidden_num):
    """Proof of a well formed credential request:

        nym = g^ms * h^r_nym                           (Schnorr group)
        C_j = g^mc_j * h^rc_j          for each j       (Schnorr group)
        U   = S^v1 * R0^ms * prod Rc_j^mc_j * prod Rh_l^mh_l   (QR_N)

    ms and the attributes are integer secrets, shared between both groups.
    """
    zk = ZKProof(params.hash_bit_len)
    sg = pub_key.pedersen.group

    g, h, nym = zk.get(ConstGen, ["g", "h", "nym"])
    S, R0, U = zk.get(ConstGen, ["S", "R0", "U"])
    Rc = zk.get_array(ConstGen, "Rc", committed_num)
    Rh = zk.get_array(ConstGen, "Rh", hidden_num)
    C = zk.get_array(ConstGen, "C", committed_num)

    ms = zk.get(Sec, "ms", bits=params.attr_witness_bits)
    v1 = zk.get(Sec, "v1", bits=params.v1_witness_bits)
    r_nym = zk.get(Sec, "r_nym")
    mc = zk.get_array(Sec, "mc", committed_num, bits=params.attr_witness_bits)
    rc = zk.get_array(Sec, "rc", committed_num)
    mh = zk.get_array(Sec, "mh", hidden_num, bits=params.attr_witness_bits)

    zk.add_proof(nym, g ** ms * h ** r_nym, sg)
    for Cj, mj, rj in zip(C, mc, rc):
        zk.add_proof(Cj, g ** mj * h ** rj, sg)

    rhs = S ** v1 * R0 ** ms
    for R, m in zip(Rc + Rh, mc + mh):
        rhs = rhs * R ** m
    zk.add_proof(U, rhs, pub_key.qr)

    return zk


def set_request_publics(env, pub_key, nym, commitments, U, hidden_num):
    env.g, env.h = pub_key.pedersen.group.G, pub_key.pedersen.H
    env.nym = nym
    env.S, env.R0, env.U = pub_key.S, pub_key.R0, U
    env.Rc = pub_key.rs_committed[:len(commitments)]
    env.Rh = pub_key.rs_hidden[:hidden_num]
    env.C = list(commitments)


def a_statement(params, group):
    """Proof that A = Q^d, for d = 1/e mod the order of QR_N. Only the issuer
    knows the order: it builds the statement over its own group, the user
    over the public one."""
    zk = ZKProof(params.hash_bit_len)
    Q, A = zk.get(ConstGen, ["Q", "A"])
    d = zk.get(Sec, "e_inv")
    zk.add_proof(A, Q ** d, group)
    return zk


def presentation_statement(params, pub_key, known_num, committed_num, hidden_num,
                           revealed_known, revealed_committed):
    """Proof of possession of a credential on a randomized A, revealing the
    attributes at the given indices:

        Z * A^(-2^(e_bit_len-1)) * prod_revealed R_i^(-m_i)
            = A^e' * S^v' * R0^ms * prod_unrevealed R_i^m_i

    The revealed values enter as public exponents. Unrevealed known and
    committed attributes are named mk<i> and mc<j>, their revealed
    counterparts neg_mk<i> and neg_mc<j>.
    """
    zk = ZKProof(params.hash_bit_len)

    Z, S, R0, A = zk.get(ConstGen, ["Z", "S", "R0", "A"])
    Rk = zk.get_array(ConstGen, "Rk", known_num)
    Rc = zk.get_array(ConstGen, "Rc", committed_num)
    Rh = zk.get_array(ConstGen, "Rh", hidden_num)
    minus_e_start = zk.get(ConstPub, "minus_e_start")

    e_prime = zk.get(Sec, "e_prime", bits=params.e_witness_bits)
    v_prime = zk.get(Sec, "v_prime", bits=params.v_witness_bits)
    ms = zk.get(Sec, "ms", bits=params.attr_witness_bits)
    mh = zk.get_array(Sec, "mh", hidden_num, bits=params.attr_witness_bits)

    lhs = Z * A ** minus_e_start
    rhs = A ** e_prime * S ** v_prime * R0 ** ms

    for prefix, bases, revealed in (("mk", Rk, revealed_known), ("mc", Rc, revealed_committed)):
        for i, R in enumerate(bases):
            if i in revealed:
                lhs = lhs * R ** zk.get(ConstPub, "neg_%s%d" % (prefix, i))
            else:
                rhs = rhs * R ** zk.get(Sec, "%s%d" % (prefix, i), bits=params.attr_witness_bits)

    for R, m in zip(Rh, mh):
        rhs = rhs * R ** m

    zk.add_proof(lhs, rhs, pub_key.qr)
    return zk


def set_presentation_publics(env, params, pub_key, A, known_num, committed_num,
                             hidden_num, revealed_known, revealed_committed):
    """``revealed_known`` and ``revealed_committed`` map attribute indices to
    their disclosed values."""
    env.Z, env.S, env.R0, env.A = pub_key.Z, pub_key.S, pub_key.R0, A
    env.Rk = pub_key.rs_known[:known_num]
    env.Rc = pub_key.rs_committed[:committed_num]
    env.Rh = pub_key.rs_hidden[:hidden_num]
    env.minus_e_start = -pow2(params.e_bit_len - 1)

    for i, m in revealed_known.items():
        setattr(env, "neg_mk%d" % i, -m)
    for j, m in revealed_committed.items():
        setattr(env, "neg_mc%d" % j, -m)


# --- TESTS ---

class _FakeKey(object):
    """Just enough of a public key to build statements."""

    class _Pedersen(object):
        group = None

    pedersen = _Pedersen()
    qr = None


def test_request_statement_variables():
    from .params import default_params
    params = default_params()

    zk = request_statement(params, _FakeKey(), 2, 1)
    assert set(zk.Sec) == {"ms", "v1", "r_nym", "mc[0]", "mc[1]", "rc[0]", "rc[1]", "mh[0]"}
    assert zk.Sec["ms"].bits == params.attr_witness_bits
    assert zk.Sec["v1"].bits == params.v1_witness_bits
    assert zk.Sec["r_nym"].bits is None
    assert len(zk.proofs) == 4

    zk = request_statement(params, _FakeKey(), 0, 0)
    assert set(zk.Sec) == {"ms", "v1", "r_nym"}
    assert len(zk.proofs) == 2


def test_presentation_statement_variables():
    from .params import default_params
    params = default_params()

    zk = presentation_statement(params, _FakeKey(), 4, 2, 3, [1, 2], [0])
    assert {"neg_mk1", "neg_mk2", "neg_mc0", "minus_e_start"} <= set(zk.Const)
    assert set(zk.Sec) == {"e_prime", "v_prime", "ms", "mk0", "mk3", "mc1",
                           "mh[0]", "mh[1]", "mh[2]"}
    assert zk.Sec["e_prime"].bits == params.e_witness_bits
    assert len(zk.proofs) == 1

    env = ZKEnv(zk)
    with pytest.raises(Exception):
        env.neg_mk0 = 5
