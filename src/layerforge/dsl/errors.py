from __future__ import annotations


class DSLValidationError(ValueError):
    pass
