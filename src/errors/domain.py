"""Typed domain exceptions shared by services and the CLI.

Services raise these instead of returning sentinel values; the CLI maps
them to exit codes and user-facing messages.

Usage:
    # In service layer
    raise NotFoundError("Credential", credential_id)

    # In a CLI command
    try:
        service.get_credential(credential_id)
    except NotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
"""


class DomainError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class NotFoundError(DomainError):
    """Resource was not found."""

    def __init__(self, resource_type: str, identifier: str) -> None:
        super().__init__(f"{resource_type} '{identifier}' not found")
        self.resource_type = resource_type
        self.identifier = identifier


class ConflictError(DomainError):
    """Operation conflicts with current state (e.g., a run already in progress)."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ValidationError(DomainError):
    """Input failed validation (e.g., incomplete platform auth material)."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
