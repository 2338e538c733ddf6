"""
Guarded session module.

This module runs an action while the boot partition is open and makes sure
the partition is closed again on every exit path.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

from cryptboot.core.partition import PartitionController
from cryptboot.core.exceptions import GuardedError, CloseFailedAfterSuccess, LifecycleError

logger = logging.getLogger('cryptboot')

T = TypeVar("T")


@dataclass
class SessionOutcome:
    """
    Result of a guarded session.

    Attributes:
        value: Return value of the action when it succeeded
        error: Exception raised by the action, if any
        close_error: Error raised while closing the partition, if any
    """
    value: Any = None
    error: Optional[Exception] = None
    close_error: Optional[LifecycleError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.close_error is None

    def unwrap(self) -> Any:
        """
        Return the action's value or raise the failure.

        Raises:
            GuardedError: If the action failed (close error attached)
            CloseFailedAfterSuccess: If only closing the partition failed
        """
        if self.error is not None:
            raise GuardedError(self.error, self.close_error) from self.error
        if self.close_error is not None:
            raise CloseFailedAfterSuccess(self.close_error, self.value) from self.close_error
        return self.value


class GuardedSession:
    """
    Opens the partition, runs an action, and always closes the partition.
    """
    def __init__(self, controller: PartitionController):
        self.controller = controller

    def _close(self) -> Optional[LifecycleError]:
        try:
            self.controller.close()
        except LifecycleError as e:
            logger.error(f"Failed to close the boot partition: {e}")
            return e
        return None

    def run(self, action: Callable[[], Any]) -> SessionOutcome:
        """
        Run an action with the partition open.

        If opening fails the action is not run, close is not attempted and
        the LifecycleError propagates.

        Args:
            action: Callable run while the partition is mounted

        Returns:
            SessionOutcome of the action, produced after the partition was closed

        Raises:
            LifecycleError: If the partition cannot be opened
        """
        self.controller.open()

        try:
            value = action()
        except Exception as e:
            logger.debug(f"Action failed, closing the boot partition: {e}")
            return SessionOutcome(error=e, close_error=self._close())
        except BaseException:
            # KeyboardInterrupt, SystemExit: close, then let it through
            self._close()
            raise

        return SessionOutcome(value=value, close_error=self._close())


def run_guarded(controller: PartitionController, action: Callable[[], T]) -> T:
    """
    Run an action with the partition open and return its value.

    Args:
        controller: Controller of the boot partition
        action: Callable run while the partition is mounted

    Returns:
        The action's return value

    Raises:
        LifecycleError: If the partition cannot be opened
        GuardedError: If the action failed
        CloseFailedAfterSuccess: If the action succeeded but close failed
    """
    return GuardedSession(controller).run(action).unwrap()
