import re

DSN_TEMPLATE = "postgres://{user}:{password}@{host}:{port}/{database}?sslmode=disable"

_PASSWORD_RE = re.compile(r"(://[^:/@]*:)([^@]*)(@)")


def build_dsn(user: str, password: str, host: str, port: int, database: str) -> str:
    """
    Formats a Postgres connection URI.

    Values are substituted literally: nothing is percent-encoded, so
    credentials containing `@`, `:` or `/` produce an unusable URI.
    """
    return DSN_TEMPLATE.format(
        user=user, password=password, host=host, port=int(port), database=database
    )


def build_url(host: str, port: int) -> str:
    """Formats a `host:port` address."""
    return f"{host}:{int(port)}"


def build_http_url(host: str, port: int) -> str:
    return f"http://{build_url(host, port)}"


def mask_password(dsn: str) -> str:
    """Hides the password of a connection URI, for logging."""
    return _PASSWORD_RE.sub(r"\1****\3", dsn)
