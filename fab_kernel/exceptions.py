"""
Typed Exception Hierarchy for the Fabrication Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (the quotation screens, the stock-inward forms, the estimation
builder) must react differently to a mistyped glass formula, an
over-consumption attempt and a malformed request.  Matching on message text
is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        ledger.consume_stock(...)
    except InsufficientStockError as e:
        return {"error": e.code, "available": e.available_quantity}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    FabricationError (base)
    |
    +-- ValidationError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |   +-- BatchNotFoundError
    |   +-- TransactionNotFoundError
    |
    +-- ReversalError
    |   +-- NotReversibleError
    |   +-- AlreadyReversedError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- FormulaError
        +-- FormulaSyntaxError
        +-- UnknownVariableError
        +-- DivisionByZeroError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                    | When Raised
----------------|-------------------------|------------------------------------
Validation      | VALIDATION_ERROR        | Malformed or out-of-range input
----------------|-------------------------|------------------------------------
Stock           | INSUFFICIENT_STOCK      | Requested more than active batches hold
                | BATCH_NOT_FOUND         | Batch ID doesn't exist
                | TRANSACTION_NOT_FOUND   | Transaction ID doesn't exist
----------------|-------------------------|------------------------------------
Reversal        | NOT_REVERSIBLE          | Only consumptions can be reversed
                | ALREADY_REVERSED        | Consumption already has a correction
----------------|-------------------------|------------------------------------
Immutability    | IMMUTABILITY_VIOLATION  | Editing a recorded batch/transaction
----------------|-------------------------|------------------------------------
Formula         | FORMULA_ERROR           | Glass formula failed for a dimension
                | FORMULA_SYNTAX_ERROR    | Malformed expression
                | UNKNOWN_VARIABLE        | Name not present in bindings
                | DIVISION_BY_ZERO        | Divisor evaluated to zero

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Inherit from Exception, not ValueError.  Domain errors are catchable
   as a group and never mix with programming errors.

2. FormulaSyntaxError instead of SyntaxError.  The builtin name is reserved
   for Python source errors; shadowing it breaks ``except SyntaxError``
   around imports and compile().

3. Failures never mutate state.  Every raise site in the ledger happens
   before the first write of its unit of work.
"""


class FabricationError(Exception):
    """
    Base exception for all fabrication kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "FABRICATION_ERROR"


# Validation


class ValidationError(FabricationError):
    """Input is malformed or outside the allowed range."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str, value: object = None):
        self.field = field
        self.reason = reason
        self.value = value
        super().__init__(f"Invalid {field}: {reason}")


# Stock-related exceptions


class StockError(FabricationError):
    """Base exception for stock ledger errors."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """
    Active batches for the stock key hold less than the requested quantity.

    Raised before any batch is touched: consumption is all-or-nothing.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        material_id: str,
        stock_key: str,
        requested_quantity: int,
        available_quantity: int,
    ):
        self.material_id = material_id
        self.stock_key = stock_key
        self.requested_quantity = requested_quantity
        self.available_quantity = available_quantity
        super().__init__(
            f"Insufficient stock for {stock_key}: "
            f"required {requested_quantity}, available {available_quantity}"
        )


class BatchNotFoundError(StockError):
    """Batch with given ID was not found."""

    code: str = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(f"Batch not found: {batch_id}")


class TransactionNotFoundError(StockError):
    """Stock transaction with given ID was not found."""

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Stock transaction not found: {transaction_id}")


# Reversal-related exceptions


class ReversalError(FabricationError):
    """Base exception for corrective reversal errors."""

    code: str = "REVERSAL_ERROR"


class NotReversibleError(ReversalError):
    """Only consumption transactions can be reversed."""

    code: str = "NOT_REVERSIBLE"

    def __init__(self, transaction_id: str, transaction_type: str):
        self.transaction_id = transaction_id
        self.transaction_type = transaction_type
        super().__init__(
            f"Transaction {transaction_id} of type {transaction_type} "
            "cannot be reversed"
        )


class AlreadyReversedError(ReversalError):
    """Consumption was already reversed by a correction transaction."""

    code: str = "ALREADY_REVERSED"

    def __init__(self, transaction_id: str, correction_id: str):
        self.transaction_id = transaction_id
        self.correction_id = correction_id
        super().__init__(
            f"Transaction {transaction_id} already reversed by {correction_id}"
        )


# Immutability-related exceptions


class ImmutabilityError(FabricationError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Batches may only change current_quantity and status; stock
    transactions may never change.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Formula-related exceptions


class FormulaError(FabricationError):
    """
    A glass/cutting formula could not be evaluated.

    Raised directly by the glass calculator with ``dimension`` set to
    "width" or "height", chaining the evaluator error as ``__cause__``.
    """

    code: str = "FORMULA_ERROR"

    def __init__(
        self,
        expression: str,
        reason: str,
        dimension: str | None = None,
    ):
        self.expression = expression
        self.reason = reason
        self.dimension = dimension
        prefix = f"{dimension.capitalize()} formula" if dimension else "Formula"
        super().__init__(f"{prefix} {expression!r}: {reason}")


class FormulaSyntaxError(FormulaError):
    """Expression is malformed: bad token, unbalanced parentheses, empty."""

    code: str = "FORMULA_SYNTAX_ERROR"

    def __init__(self, expression: str, reason: str, position: int | None = None):
        self.position = position
        if position is not None:
            reason = f"{reason} at position {position}"
        super().__init__(expression, reason)


class UnknownVariableError(FormulaError):
    """Expression references a name absent from the bindings."""

    code: str = "UNKNOWN_VARIABLE"

    def __init__(self, expression: str, variable: str):
        self.variable = variable
        super().__init__(expression, f"unknown variable '{variable}'")


class DivisionByZeroError(FormulaError):
    """A division's divisor evaluated to zero."""

    code: str = "DIVISION_BY_ZERO"

    def __init__(self, expression: str):
        super().__init__(expression, "division by zero")
