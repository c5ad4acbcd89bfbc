## Times the steps of issuing, updating and showing a credential with the
#  default parameter sizes, and prints the three proof statements.
#
#  Usage: python examples/cl_timing.py [repetitions]

import sys
import time

from clcred.manager import CredentialManager
from clcred.org import new_org, new_org_from_params
from clcred.params import default_params
from clcred.proofs import a_statement, presentation_statement, request_statement


def timed(label, repetitions, f):
    t0 = time.perf_counter()
    for _ in range(repetitions):
        out = f()
    T = time.perf_counter() - t0
    print("%.3f ms\t%s" % (1000 * T / repetitions, label))
    return out


def time_it_all(repetitions=10):
    print("Timings of operations (%s repetitions)" % repetitions)

    params = default_params()
    org = timed("Organization setup", 1, lambda: new_org(params))
    verifier = new_org_from_params(params, org.pub_key)

    known, committed, hidden = [7, 6, 5, 22], [9, 17], [11, 13, 19]
    ms = org.pub_key.generate_user_master_secret()

    cm = timed("Credential manager setup", repetitions,
               lambda: CredentialManager(params, org.pub_key, ms, known, committed, hidden))

    timed("Credential request", repetitions,
          lambda: cm.get_credential_request(org.get_credential_issue_nonce()))

    nonces = [org.get_credential_issue_nonce() for _ in range(repetitions)]
    requests = [cm.get_credential_request(n) for n in nonces]
    credential, a_proof = timed("Credential issuing", repetitions,
                                lambda: org.issue_credential(requests.pop()))

    timed("Credential verification", repetitions,
          lambda: cm.verify_credential(credential, a_proof))

    credential, a_proof = timed("Credential update", repetitions,
                                lambda: org.update_credential(cm.nym, cm.update_credential(known), known))
    cm.verify_credential(credential, a_proof)

    timed("Credential show", repetitions,
          lambda: cm.build_credential_proof(credential, [1, 2], [0],
                                            verifier.get_prove_credential_nonce()))

    shows = [cm.build_credential_proof(credential, [1, 2], [0], verifier.get_prove_credential_nonce())
             for _ in range(repetitions)]

    def verify():
        randomized, proof = shows.pop()
        assert verifier.prove_credential(randomized, proof, [1, 2], [0], [6, 5], [9])

    timed("Credential show verification", repetitions, verify)


if __name__ == "__main__":
    repetitions = int(sys.argv[1]) if len(sys.argv) > 1 else 10
    time_it_all(repetitions)

    params = default_params()
    org = new_org(params)

    print("\nProof of a well formed credential request")
    print(request_statement(params, org.pub_key, 2, 3).render_proof_statement())

    print("\nProof of a correctly computed signature")
    print(a_statement(params, org.group).render_proof_statement())

    print("\nProof of credential show")
    print(presentation_statement(params, org.pub_key, 4, 2, 3, [1, 2], [0]).render_proof_statement())
