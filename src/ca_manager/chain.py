"""
Chain builder — trust-chain construction and artifact assembly.

Pure functions over PEM bytes, no I/O.

A CA's stored trust chain is ordered leaf-ward first and ends with the
root's certificate:

  chain(root)           = []
  chain(child of root)  = [cert(root)]
  chain(C)              = [cert(parent(C))] ++ chain(parent(C))

The chain handed out with an end-entity certificate holds only the
intermediates, stopping just before the root, which relying parties
receive out-of-band:

  issuing_chain(I)      = [cert(I)] ++ chain(I) without its last element
"""

from __future__ import annotations

from ca_manager.domain.models import AssembledCertificate


def _terminated(pem: bytes) -> bytes:
    return pem if pem.endswith(b"\n") else pem + b"\n"


def build_chain_for_new_ca(parent_chain: list[bytes], parent_cert: bytes) -> list[bytes]:
    """Chain for a CA newly signed by a parent holding `parent_chain`."""
    return [parent_cert, *parent_chain]


def issuing_chain(issuer_cert: bytes, issuer_chain: list[bytes]) -> list[bytes]:
    """Intermediates to ship with a certificate signed by this issuer; empty under a root."""
    if not issuer_chain:
        return []
    return [issuer_cert, *issuer_chain[:-1]]


def concatenate(parts: list[bytes]) -> bytes:
    return b"".join(_terminated(part) for part in parts)


def assemble_for_certificate(cert: bytes, key: bytes, chain: list[bytes]) -> AssembledCertificate:
    """
    Produce every PEM form of a freshly signed certificate.

    The plain forms are always present; the chained forms only when
    `chain` (see issuing_chain) is non-empty.
    """
    keycert = concatenate([key, cert])
    if not chain:
        return AssembledCertificate(cert=cert, keycert=keycert)

    chained_cert = concatenate([cert, *chain])
    return AssembledCertificate(
        cert=cert,
        keycert=keycert,
        chained_cert=chained_cert,
        chained_keycert=concatenate([key, chained_cert]),
    )
