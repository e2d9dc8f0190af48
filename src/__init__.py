"""
Ledger Gate - Source Package

A role-gated financial ledger for small branch offices: authenticated
staff record, search, export and scan transactions; access to every
view is decided by the role resolved for the signed-in identity.

DESIGN PRINCIPLES:
1. Fail closed: unproven roles get the least privilege
2. One owner for auth state, passed explicitly
3. Views decide from a snapshot, never from ambient globals
4. Every security and ledger event is auditable
5. Hosted backend is swappable behind interfaces
"""

__version__ = "1.0.0"
__author__ = "Ledger Gate Team"
