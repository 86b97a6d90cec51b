"""HTTP-01 challenge computations (RFC 8555 Section 8.3)."""

HTTP01_PATH_PREFIX = "/.well-known/acme-challenge/"


def http_resource_path(token: str) -> str:
    """Path the validation server requests over plain HTTP on port 80."""
    return f"{HTTP01_PATH_PREFIX}{token}"


def http_resource_url(domain: str, token: str) -> str:
    return f"http://{domain}{http_resource_path(token)}"
