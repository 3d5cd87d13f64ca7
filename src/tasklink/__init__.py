"""tasklink -- connect to a task-management provider with OAuth2 + PKCE.

tasklink implements the client side of the OAuth2 Authorization Code grant
with PKCE for a public client, keeps the resulting tokens fresh, and exposes
an authenticated HTTP pipeline plus a cached view of the current user and
their workspaces.

Typical workflow::

    tasklink config set client_id 1200000000000000
    tasklink auth login          # consent in the browser
    tasklink workspace list

Modules:
    app: Typer application and CLI entry point.
    connection: Facade wiring the auth core, API client and cache together.
    models: Pydantic models shared across the package.
    config: XDG-aware settings resolution and atomic file writes.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
    workspace: Identity and workspace cache.
"""

__version__ = "0.1.0"
