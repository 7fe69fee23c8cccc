"""
Test Suite for human-attest

- attestation codec and ledger encoding
- provider verifiers and the verifier registry
- approval polling, store, server and gate
"""
