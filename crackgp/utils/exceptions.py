"""
Custom Exception Classes for crackgp

This module defines the exception classes used throughout crackgp so that
callers can tell structural/usage errors apart from the numeric failures the
evolutionary loop recovers from on its own. All custom exceptions inherit from
CrackGPError to allow for unified exception handling.

Exception Hierarchy:
    CrackGPError (base)
    ├── ConfigurationError
    │   └── InvalidConfigError
    ├── GrammarError
    │   └── ExpressionParsingError
    ├── DataError
    │   └── DataValidationError
    └── SearchError
        ├── ConstraintUnsatisfiableError
        ├── InvalidSelectorError
        └── MissingReturnValuesError

Non-finite fitness values are deliberately absent from this hierarchy: they are
absorbed by the statistics tracker and never abort a generation.
"""

from typing import Optional, Any, Dict
import traceback


class CrackGPError(Exception):
    """
    Base exception for all crackgp-specific errors.

    Attributes:
        message: Primary error message
        context: Additional context information (optional)
        suggestion: Suggested action to resolve the error (optional)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
        cause: Optional[Exception] = None
    ):
        """
        Initialize CrackGPError.

        Args:
            message: Primary error message describing what went wrong
            context: Additional context information for debugging
            suggestion: Suggested action to resolve the error
            cause: Original exception that caused this error (if any)
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.suggestion = suggestion
        self.cause = cause

        if cause:
            self.original_traceback = traceback.format_exc()
        else:
            self.original_traceback = None

    def __str__(self) -> str:
        result = self.message

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            result += f" (Context: {context_str})"

        if self.suggestion:
            result += f" | Suggestion: {self.suggestion}"

        return result

    def get_detailed_message(self) -> str:
        """Return a detailed error message including context and suggestions."""
        lines = [f"{self.__class__.__name__}: {self.message}"]

        if self.context:
            lines.append("Context:")
            for key, value in self.context.items():
                lines.append(f"  {key}: {value}")

        if self.suggestion:
            lines.append(f"Suggestion: {self.suggestion}")

        if self.cause:
            lines.append(f"Caused by: {type(self.cause).__name__}: {self.cause}")

        return "\n".join(lines)


# Configuration-related exceptions
class ConfigurationError(CrackGPError):
    """Base class for configuration-related errors."""
    pass


class InvalidConfigError(ConfigurationError):
    """
    Raised when configuration data is invalid or malformed.

    Used by the YAML loader when a file parses but does not describe a valid
    run configuration.
    """

    def __init__(
        self,
        message: str,
        config_field: Optional[str] = None,
        invalid_value: Optional[Any] = None,
        **kwargs
    ):
        context = {}
        if config_field:
            context['field'] = config_field
        if invalid_value is not None:
            context['invalid_value'] = invalid_value

        suggestion = "Check configuration file format and parameter values"
        if config_field:
            suggestion += f" for field '{config_field}'"

        super().__init__(message, context=context, suggestion=suggestion, **kwargs)


# Grammar and expression exceptions
class GrammarError(CrackGPError):
    """Base class for gene grammar errors."""
    pass


class ExpressionParsingError(GrammarError):
    """Raised when a gene string cannot be parsed."""

    def __init__(self, expression: str, reason: Optional[str] = None, **kwargs):
        message = f"Failed to parse gene: '{expression}'"
        if reason:
            message += f" ({reason})"
        context = {'expression': expression}
        if reason:
            context['reason'] = reason

        suggestion = "Genes must use prefix notation over the configured function set"
        super().__init__(message, context=context, suggestion=suggestion, **kwargs)


# Data-related exceptions
class DataError(CrackGPError):
    """Base class for data-related errors."""
    pass


class DataValidationError(DataError):
    """Raised when training, validation or test data is inconsistent."""

    def __init__(self, message: str, partition: Optional[str] = None, **kwargs):
        context = {'partition': partition} if partition else {}
        suggestion = "Check array shapes and remove NaN/inf values from the data"
        super().__init__(message, context=context, suggestion=suggestion, **kwargs)


# Search-related exceptions
class SearchError(CrackGPError):
    """Base class for errors raised by the evolutionary search components."""
    pass


class ConstraintUnsatisfiableError(SearchError):
    """
    Raised when gene generation cannot meet the node count, uniqueness and
    variable-reference constraints within the configured number of attempts.
    """

    def __init__(
        self,
        individual_index: int,
        gene_index: int,
        attempts: int,
        rejections: Optional[Dict[str, int]] = None,
        **kwargs
    ):
        message = (
            f"Could not build gene {gene_index} of individual {individual_index} "
            f"after {attempts} attempts"
        )
        context = {
            'individual_index': individual_index,
            'gene_index': gene_index,
            'attempts': attempts,
        }
        if rejections:
            context['rejections'] = dict(rejections)

        suggestion = "Increase max_nodes or max_depth, or reduce max_genes"
        super().__init__(message, context=context, suggestion=suggestion, **kwargs)


class InvalidSelectorError(SearchError):
    """
    Raised when a request references a nonexistent model id, a missing
    validation/test partition or an unrecognised argument shape.
    """

    def __init__(self, selector: Any, reason: str, **kwargs):
        message = f"Invalid selector {selector!r}: {reason}"
        context = {'selector': selector, 'reason': reason}
        suggestion = "Use 'best', 'valbest', 'testbest' or a valid population index"
        super().__init__(message, context=context, suggestion=suggestion, **kwargs)


class MissingReturnValuesError(SearchError):
    """Raised when a model's regression coefficients were never computed."""

    def __init__(self, model_id: Any, **kwargs):
        message = f"Model {model_id!r} has no computed regression coefficients"
        context = {'model_id': model_id}
        suggestion = (
            "Every gene of this model probably produced non-finite output on the "
            "training data; refit or pick another model"
        )
        super().__init__(message, context=context, suggestion=suggestion, **kwargs)


def format_exception_chain(exception: Exception) -> str:
    """
    Format an exception chain for better readability.

    Args:
        exception: The exception to format

    Returns:
        Formatted string showing the exception chain
    """
    lines = []
    current = exception

    while current:
        if isinstance(current, CrackGPError):
            lines.append(current.get_detailed_message())
        else:
            lines.append(f"{type(current).__name__}: {current}")

        current = getattr(current, 'cause', None) or getattr(current, '__cause__', None)
        if current:
            lines.append("  Caused by:")

    return "\n".join(lines)
