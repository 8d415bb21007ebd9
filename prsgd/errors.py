"""Error kinds raised by loss functions, workers and the coordinator."""


class DimensionMismatchError(ValueError):
    """Input vector length differs from the function's input dimension."""


class InvalidConstructionError(ValueError):
    """Loss function or run was configured with inconsistent arguments."""


class DivergenceError(ArithmeticError):
    """Monitoring loss or gradient norm became NaN/inf."""
