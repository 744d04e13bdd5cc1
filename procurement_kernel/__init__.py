"""
Procurement Kernel - request lifecycle and approval workflow engine.

Multi-tenant procurement requests flowing through a sequential,
role-gated approval chain with:
- Collision-free sequential request numbering
- First-approver-wins approval fan-out
- Explicit principals (no ambient auth state)
- All-or-nothing state transitions
"""

__version__ = "0.1.0"
