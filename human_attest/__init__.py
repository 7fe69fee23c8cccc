"""
Human Approval Attestation

Portable, verifiable records that a unique human approved a specific commit,
and the polling gate that lets CI pipelines wait on them.

Components:
- Attestation Codec: canonical encoding, SHA-256 integrity hash, validation
  * Canonical form covers {version, type, subject, human_proof, timestamp}
  * attestation_hash, chain_record and signature are never hashed
  * Validation aggregates every structural problem, then checks the hash
- Verifier Registry: explicit provider table built at startup
  * Mock mode is a constructor argument, not ambient process state
- Providers: world_id, gitcoin_passport, brightid, civic, proof_of_humanity
  * Uniform verify() / to_human_proof() contract
  * verify() never raises - failures come back as VerificationResult
  * Non-ZK providers derive nullifier_hash = sha256("<provider>:<unique_id>")
- Approval Workflow: PENDING -> APPROVED | TIMED_OUT
  * Bounded polling against a status endpoint
  * Transport errors during status checks are logged and treated as pending
  * Received attestations are re-validated before they are trusted
- Approval Store: (repository, commit) keyed, journaled, never deleted
- Ledger Encoding: keccak-256 arguments for on-chain registries
"""

__version__ = "1.0.0"

ATTESTATION_VERSION = "1.0"
ATTESTATION_TYPE = "HumanApprovalAttestation"
