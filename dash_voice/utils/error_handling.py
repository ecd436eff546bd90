"""
Structured error handling for the voice session.
"""

import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Callable, Dict, Any, List
from datetime import datetime


class ErrorSeverity(Enum):
    """Error severity levels."""
    WARNING = "warning"          # Log and continue
    RECOVERABLE = "recoverable"  # Attempt recovery, session stays usable
    FATAL = "fatal"              # Session cannot continue


class InvalidTransitionError(ValueError):
    """Raised when the state machine rejects a transition."""

    def __init__(self, state, event):
        self.state = state
        self.event = event
        super().__init__(f"Invalid transition: {state.name} on {event.name}")


@dataclass
class ComponentError:
    """Structured error information."""
    component: str
    severity: ErrorSeverity
    message: str
    exception: Optional[BaseException] = None
    retryable: bool = False
    context: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=lambda: datetime.now().timestamp())
    traceback_str: Optional[str] = None

    def __post_init__(self):
        """Capture traceback if exception provided."""
        if self.exception and not self.traceback_str:
            self.traceback_str = ''.join(
                traceback.format_exception(
                    type(self.exception),
                    self.exception,
                    self.exception.__traceback__
                )
            )


def format_error(error: Any) -> str:
    """Turn an exception or error payload into a user-facing message."""
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    if isinstance(error, str) and error:
        return error
    return "An unknown error occurred"


class ErrorHandler:
    """
    Records component errors and runs registered recovery strategies.

    Features:
    - Severity-based handling
    - Component-specific recovery strategies
    - Bounded error history
    """

    def __init__(self, max_history: int = 100):
        self._error_log: List[ComponentError] = []
        self._recovery_strategies: Dict[str, Callable] = {}
        self._max_history = max_history

    def register_recovery(self, component: str, strategy: Callable):
        """
        Register recovery strategy for a component.

        Args:
            component: Component name
            strategy: Async recovery function that takes ComponentError and
                returns True when it recovered
        """
        self._recovery_strategies[component] = strategy

    async def handle_error(self, error: ComponentError) -> bool:
        """
        Handle error based on severity.

        Args:
            error: Error to handle

        Returns:
            True if handled or recovered, False if the caller must degrade
        """
        self._error_log.append(error)
        if len(self._error_log) > self._max_history:
            self._error_log.pop(0)

        if error.severity == ErrorSeverity.WARNING:
            print(f"⚠️  {error.component}: {error.message}")
            return True
        elif error.severity == ErrorSeverity.RECOVERABLE:
            return await self._handle_recoverable(error)
        else:
            print(f"💀 FATAL ERROR in {error.component}: {error.message}")
            if error.traceback_str:
                print(error.traceback_str)
            return False

    async def _handle_recoverable(self, error: ComponentError) -> bool:
        """Handle recoverable error with the registered strategy."""
        print(f"🔧 {error.component}: {error.message} (attempting recovery)")

        strategy = self._recovery_strategies.get(error.component)
        if not strategy:
            return False

        try:
            recovered = await strategy(error)
        except Exception as e:
            print(f"❌ Recovery failed for {error.component}: {e}")
            return False
        if recovered is False:
            print(f"❌ Recovery failed for {error.component}")
            return False
        print(f"✅ Recovery successful for {error.component}")
        return True

    def get_error_history(self, component: Optional[str] = None) -> List[ComponentError]:
        """
        Get error history, optionally filtered by component.

        Args:
            component: Optional component name to filter by

        Returns:
            List of errors
        """
        if component:
            return [e for e in self._error_log if e.component == component]
        return self._error_log.copy()

    def get_error_summary(self) -> Dict[str, Any]:
        """Get summary of errors."""
        summary = {
            'total_errors': len(self._error_log),
            'by_severity': {},
            'by_component': {}
        }

        for error in self._error_log:
            severity = error.severity.value
            summary['by_severity'][severity] = summary['by_severity'].get(severity, 0) + 1
            summary['by_component'][error.component] = summary['by_component'].get(error.component, 0) + 1

        return summary


async def safe_cleanup(*cleanup_funcs: Callable) -> List[tuple]:
    """
    Run multiple cleanup functions, ensuring all run even if some fail.

    Args:
        *cleanup_funcs: Async cleanup functions to run

    Returns:
        List of (function name, exception) pairs for the ones that failed
    """
    errors = []

    for func in cleanup_funcs:
        try:
            await func()
        except Exception as e:
            name = getattr(func, '__name__', repr(func))
            errors.append((name, e))
            print(f"⚠️  Cleanup error in {name}: {e}")

    if errors:
        print(f"⚠️  {len(errors)} cleanup errors occurred")
    return errors
