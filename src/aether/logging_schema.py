"""Log event types for structured logging."""

from enum import StrEnum


class LogEvent(StrEnum):
    """Log event types for Aether.

    Used with logger.info/warning/error extra dict:
        logger.info("message", extra={"event": LogEvent.CONTAINER_STARTED, ...})
    """

    # Network events
    NETWORK_CREATED = "network_created"
    NETWORK_REMOVED = "network_removed"

    # Container events
    CONTAINER_CREATED = "container_created"
    CONTAINER_STARTED = "container_started"
    CONTAINER_STOPPED = "container_stopped"
    CONTAINER_RESTARTED = "container_restarted"
    CONTAINER_REMOVED = "container_removed"
    CONTAINER_AMBIGUOUS = "container_ambiguous"
    PORT_CONFLICT = "port_conflict"
    EXEC_COMPLETED = "exec_completed"

    # Workspace events
    WORKSPACE_PROVISIONED = "workspace_provisioned"
    WORKSPACE_REGISTERED = "workspace_registered"
    WORKSPACE_UNREGISTERED = "workspace_unregistered"
    WORKSPACE_NOT_REGISTERED = "workspace_not_registered"
    CONTEXT_INJECTED = "context_injected"

    # Reconciliation
    ORPHAN_FOUND = "orphan_found"
    ORPHAN_REMOVED = "orphan_removed"

    # Delegation
    JJ_EXECUTED = "jj_executed"

    # Error events
    COMMAND_FAILED = "command_failed"
