"""Packs and unpacks the keys, parameters and messages of the scheme with
msgpack, so that an organization can persist its keys and records, and
parties can exchange requests, credentials and proofs.

Example:
    >>> G = new_schnorr_group_from_params(Bn(23), Bn(4), Bn(11))
    >>> test_data = [G, Bn(-5), Credential(Bn(1), Bn(2), Bn(3))]
    >>> decode(encode(test_data)) == test_data
    True
"""

import msgpack

from petlib.bn import Bn

import pytest

from .credential import AProof, Credential, CredentialRequest, PresentationProof, \
    Proof, RandomizedCredential
from .errors import NonceReuseError
from .groups import QRSpecialRSA, SchnorrGroup, as_bn, new_schnorr_group_from_params
from .keys import PubKey, SecKey
from .org import ReceiverRecord, new_org_from_params
from .params import Params
from .pedersen import PedersenParams

__all__ = ["encode", "decode", "register_coders"]

_pack_reg = {}
_unpack_reg = {}


def register_coders(cls, num, enc_func, dec_func):
    """ Register a new type for encoding and decoding.
    Take a class type, a number, an encoding and a decoding function."""

    if num in _unpack_reg or cls in _pack_reg:
        raise Exception("Class or number already in use.")

    coders = (cls, num, enc_func, dec_func)
    _pack_reg[cls] = coders
    _unpack_reg[num] = coders


def bn_enc(obj):
    if obj < 0:
        neg = b"-"
        data = (-obj).binary()
    else:
        neg = b"+"
        data = obj.binary()
    return neg + data


def bn_dec(data):
    num = Bn.from_binary(data[1:])
    if data[0] == ord("-"):
        return -num
    return num


def fields_coders(cls, fields):
    """Coders for a class rebuilt by passing the named attributes, in order,
    to its constructor."""

    def enc(obj):
        return msgpack.packb([getattr(obj, f) for f in fields], default=default,
                             use_bin_type=True)

    def dec(data):
        values = msgpack.unpackb(data, ext_hook=ext_hook, raw=False, strict_map_key=False)
        return cls(*values)

    return enc, dec


def _init_coders():
    global _pack_reg, _unpack_reg
    _pack_reg, _unpack_reg = {}, {}
    register_coders(Bn, 0, bn_enc, bn_dec)

    typed = [(SchnorrGroup, ["P", "G", "Q"]),
             (QRSpecialRSA, ["N", "p", "q"]),
             (PedersenParams, ["group", "H"]),
             (Params, Params.FIELDS),
             (PubKey, PubKey.FIELDS),
             (SecKey, SecKey.FIELDS),
             (Proof, Proof.FIELDS),
             (AProof, AProof.FIELDS),
             (PresentationProof, PresentationProof.FIELDS),
             (CredentialRequest, CredentialRequest.FIELDS),
             (Credential, Credential.FIELDS),
             (RandomizedCredential, RandomizedCredential.FIELDS),
             (ReceiverRecord, ReceiverRecord.FIELDS)]

    for num, (cls, fields) in enumerate(typed, 1):
        enc, dec = fields_coders(cls, fields)
        register_coders(cls, num, enc, dec)


# Register default coders
_init_coders()


def default(obj):
    # Exact types first: subclasses are registered with their own coders
    if type(obj) in _pack_reg:
        _, num, enc, _ = _pack_reg[type(obj)]
        return msgpack.ExtType(num, enc(obj))

    for T in _pack_reg:
        if isinstance(obj, T):
            _, num, enc, _ = _pack_reg[T]
            return msgpack.ExtType(num, enc(obj))

    raise TypeError("Unknown type: %r" % (type(obj),))


def make_encoder(out_encoder=None):
    if out_encoder is None:
        return default
    else:
        def new_encoder(obj):
            try:
                return default(obj)
            except TypeError:
                return out_encoder(obj)
        return new_encoder


def ext_hook(code, data):
    if code in _unpack_reg:
        _, _, _, dec = _unpack_reg[code]
        return dec(data)

    # Other
    return msgpack.ExtType(code, data)


def make_decoder(custom_decoder=None):
    if custom_decoder is None:
        return ext_hook
    else:
        def new_decoder(code, data):
            out = ext_hook(code, data)
            if not isinstance(out, msgpack.ExtType):
                return out
            else:
                return custom_decoder(code, data)
        return new_decoder


def encode(structure, custom_encoder=None):
    """ Encode a structure containing keys, messages and Bn to a binary format. May define a custom encoder for user classes. """
    encoder = make_encoder(custom_encoder)
    return msgpack.packb(structure, default=encoder, use_bin_type=True)


def decode(packed_data, custom_decoder=None):
    """ Decode a binary byte sequence into a structure containing keys, messages and Bn. May define a custom decoder for custom classes. """
    decoder = make_decoder(custom_decoder)
    return msgpack.unpackb(packed_data, ext_hook=decoder, raw=False, strict_map_key=False)


# --- TESTS ---

def test_bn():
    test_data = [Bn(0), Bn(1), -Bn(2), Bn(2).pow(300), -Bn(2).pow(300)]
    packed = msgpack.packb(test_data, default=default, use_bin_type=True)
    x = msgpack.unpackb(packed, ext_hook=ext_hook, raw=False)
    assert x == test_data


def test_messages():
    responses = {"ms": Bn(5), "mh[0]": -Bn(7)}
    test_data = [Params(known_attrs_num=1),
                 Proof(Bn(1), responses),
                 AProof(Bn(1), responses),
                 PresentationProof(Bn(2), responses, Bn(3), 1, 0, 2),
                 Credential(Bn(4), Bn(5), Bn(6)),
                 RandomizedCredential(Bn(7))]
    x = decode(encode(test_data))
    assert x == test_data
    assert type(x[2]) is AProof


def test_unknown_type():
    class CustomClass(object):
        pass

    with pytest.raises(TypeError):
        encode([CustomClass()])

    def enc_custom(obj):
        if isinstance(obj, CustomClass):
            return msgpack.ExtType(99, b'')
        raise TypeError("Unknown type: %r" % (obj,))

    def dec_custom(code, data):
        return "custom"

    assert decode(encode([Bn(1), CustomClass()], enc_custom), dec_custom) == [Bn(1), "custom"]


def test_org_keys_and_records():
    from .manager import CredentialManager
    from .org import new_org

    org = new_org(Params(rho_bit_len=160, n_length=512))
    ms = org.pub_key.generate_user_master_secret()
    cm = CredentialManager(org.params, org.pub_key, ms, [1, 2], [3], [4])
    req = decode(encode(cm.get_credential_request(org.get_credential_issue_nonce())))
    assert isinstance(req, CredentialRequest)

    credential, a_proof = decode(encode(org.issue_credential(req)))
    assert cm.verify_credential(credential, a_proof)

    # Persist everything, then rebuild the issuer and a verifier
    params, pub_key, sec_key, records = decode(encode(
        [org.params, org.pub_key, org.sec_key, org.receiver_records]))
    assert pub_key == org.pub_key
    assert sec_key == org.sec_key
    assert records == org.receiver_records
    assert records[as_bn(cm.nym)].used_nonces == [req.nonce]

    issuer = new_org_from_params(params, pub_key, sec_key, records=records)
    update_nonce = cm.update_credential([5, 6])
    credential1, a_proof1 = issuer.update_credential(cm.nym, update_nonce, [5, 6])
    assert cm.verify_credential(credential1, a_proof1)

    # Used update nonces survive a second round trip
    issuer = new_org_from_params(params, pub_key, sec_key,
                                 records=decode(encode(issuer.receiver_records)))
    with pytest.raises(NonceReuseError):
        issuer.update_credential(cm.nym, update_nonce, [7])

    verifier = new_org_from_params(params, pub_key)
    nonce = verifier.get_prove_credential_nonce()
    shown = decode(encode(cm.build_credential_proof(credential1, [1], [], nonce)))
    randomized, proof = shown
    assert verifier.prove_credential(randomized, proof, [1], [], [6], [])
