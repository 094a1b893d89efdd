"""Error types raised by the costing and estimation engines."""


class ValidationError(ValueError):
    """Input shape prevents any computation (zero quantity, margin >= 100 %, bad yield)."""


class DataUnavailableError(LookupError):
    """No data to estimate from. Callers must show "no estimate", never a zero cost."""

    def __init__(self, message: str, material_id: str = ""):
        super().__init__(message)
        self.material_id = material_id


class QuotationLockedError(RuntimeError):
    """A finalized quotation cannot be recalculated or edited; revise it instead."""
