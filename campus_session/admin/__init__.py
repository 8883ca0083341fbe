"""Administrator tooling over the audit trail."""
