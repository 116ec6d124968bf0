"""Course certificates: idempotent issuance and public verification."""
