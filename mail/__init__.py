"""mail/ -- Outbound transactional email for Tourbook.

Layer rule: mail/ imports only stdlib. It does NOT import from api/ or auth/.
auth/ depends on the Notifier protocol it defines itself; api/main.py wires an
EmailNotifier into it at startup.
"""
