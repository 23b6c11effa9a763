"""Custom exceptions for PMP."""

from typing import TYPE_CHECKING, List, Optional, Sequence

if TYPE_CHECKING:
    from pmp.node import DependencyDeclaration, NodeId


class PmpException(Exception):
    """Base exception for all PMP errors."""
    pass


class ConfigValidationError(PmpException):
    """Metadata file failed validation."""

    def __init__(self, message: str, file: Optional[str] = None, line: Optional[int] = None):
        self.message = message
        self.file = file
        self.line = line
        super().__init__(self._format_error())

    def _format_error(self) -> str:
        """Format error message with location info."""
        parts = ["Configuration validation error"]
        if self.file:
            parts.append(f"\n  File: {self.file}")
        if self.line:
            parts.append(f"\n  Line: {self.line}")
        parts.append(f"\n  Error: {self.message}")
        return "".join(parts)


class DependencyError(PmpException):
    """Structural dependency graph error.

    Raised before any operation runs. There is no failure policy for these:
    a graph that cannot be resolved or ordered cannot be scheduled.
    """

    def __init__(
        self,
        message: str,
        node: Optional["NodeId"] = None,
        declaration: Optional["DependencyDeclaration"] = None,
    ):
        self.message = message
        self.node = node
        self.declaration = declaration
        super().__init__(self._format_error())

    def _format_error(self) -> str:
        parts = [f"✗ Dependency error: {self.message}"]
        if self.node is not None:
            parts.append(f"\n  Node: {self.node}")
        if self.declaration is not None:
            parts.append(f"\n  Declaration: {self.declaration.describe()}")
        return "".join(parts)


class UnresolvedDependencyError(DependencyError):
    """A declaration matched no node in the universe."""

    def __init__(
        self,
        message: str,
        node: Optional["NodeId"] = None,
        declaration: Optional["DependencyDeclaration"] = None,
        suggestions: Optional[Sequence[str]] = None,
    ):
        self.suggestions = list(suggestions or [])
        super().__init__(message, node=node, declaration=declaration)

    def _format_error(self) -> str:
        parts = [super()._format_error()]
        if self.suggestions:
            parts.append("\n\n  Did you mean:")
            for i, suggestion in enumerate(self.suggestions, 1):
                parts.append(f"\n    {i}. {suggestion}")
        return "".join(parts)


class AmbiguousDependencyError(DependencyError):
    """A descriptive declaration matched several nodes and nothing narrowed it."""

    def __init__(
        self,
        message: str,
        candidates: Sequence["NodeId"],
        node: Optional["NodeId"] = None,
        declaration: Optional["DependencyDeclaration"] = None,
    ):
        self.candidates = sorted(candidates)
        super().__init__(message, node=node, declaration=declaration)

    def _format_error(self) -> str:
        parts = [super()._format_error(), "\n\n  Candidates:"]
        for candidate in self.candidates:
            parts.append(f"\n    • {candidate}")
        parts.append("\n\n  Set 'dependency_name' to the project name to pick one.")
        return "".join(parts)


class InvalidDependencyError(DependencyError):
    """Self-reference or malformed declaration."""
    pass


class CycleError(DependencyError):
    """Circular dependency found while assigning levels."""

    def __init__(
        self,
        members: Sequence["NodeId"],
        chain: Optional[List[str]] = None,
    ):
        self.members = sorted(members)
        self.chain = chain or []
        super().__init__("Circular dependency detected")

    def _format_error(self) -> str:
        parts = [f"✗ Dependency error: {self.message}"]
        parts.append("\n  Members: " + ", ".join(str(m) for m in self.members))
        if self.chain:
            parts.append("\n  Cycle: " + " → ".join(self.chain))
        return "".join(parts)


class ExecError(PmpException):
    """An operation failed for a single node."""

    def __init__(
        self,
        message: str,
        node: Optional["NodeId"] = None,
        exit_code: Optional[int] = None,
        suggestions: Optional[List[str]] = None,
    ):
        self.message = message
        self.node = node
        self.exit_code = exit_code
        self.suggestions = suggestions or []
        super().__init__(self._format_error())

    def _format_error(self) -> str:
        """Generate error message with context."""
        if self.node is not None:
            parts = [f"✗ Operation failed: {self.node}"]
        else:
            parts = ["✗ Operation failed"]

        parts.append(f"\n  Error: {self.message}")

        if self.exit_code is not None:
            parts.append(f"\n  Exit code: {self.exit_code}")

        if self.suggestions:
            parts.append("\n\n  Suggestions:")
            for i, suggestion in enumerate(self.suggestions, 1):
                parts.append(f"\n    {i}. {suggestion}")

        return "".join(parts)


class ChangeDetectionError(PmpException):
    """Changed files could not be read from git."""

    def __init__(self, message: str, exit_code: Optional[int] = None):
        self.message = message
        self.exit_code = exit_code
        super().__init__(self._format_error())

    def _format_error(self) -> str:
        parts = ["✗ Change detection failed", f"\n  Error: {self.message}"]
        if self.exit_code is not None:
            parts.append(f"\n  Exit code: {self.exit_code}")
        return "".join(parts)
