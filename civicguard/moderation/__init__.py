"""Community flagging, admin review and the ban heuristic.

- Flags: one unresolved flag per identity per issue
- Auto-suppression: issues are hidden once they reach the flag threshold
- Review: admins resolve all outstanding flags on an issue at once
- Ban signal: recommendation only, never enforced here
"""
