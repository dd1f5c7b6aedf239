"""Box Manager - personal inventory of storage boxes (backend).

Users sort physical boxes into categories, record the items in each box and search
across everything. The interesting part is `boxmgr.auth`: stateless signed sessions,
admin gating, and the rule that an admin always exists while any user does.
"""

__all__ = ["__version__"]

__version__ = "0.3.0"
