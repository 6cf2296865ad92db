"""Mapping of repodocs errors to HTTP responses."""

from fastapi import HTTPException, status

from repodocs.errors import RepoDocsError

STATUS_BY_KIND = {
    "validation": status.HTTP_400_BAD_REQUEST,
    "not_found": status.HTTP_404_NOT_FOUND,
    "auth": status.HTTP_401_UNAUTHORIZED,
    "rate_limited": status.HTTP_429_TOO_MANY_REQUESTS,
    "storage": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "hosting_api": status.HTTP_502_BAD_GATEWAY,
    "gateway": status.HTTP_502_BAD_GATEWAY,
}


def status_for(error: RepoDocsError) -> int:
    """HTTP status code for an error kind."""
    return STATUS_BY_KIND.get(error.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)


def http_error(error: RepoDocsError) -> HTTPException:
    """HTTPException carrying the error message and kind."""
    return HTTPException(status_code=status_for(error), detail=error.to_dict())
