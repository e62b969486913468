"""odoostack.

Idempotent single-host provisioning of an Odoo + PostgreSQL stack, plus
first-run server hardening. Every step is a reconciliation of one managed
resource:
 - probe it by exact name
 - create it when absent, start it when stopped, leave it alone otherwise
 - stop the run at the first failure, without rollback
"""
