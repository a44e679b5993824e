from ..dsn import build_http_url, build_url
from ..fixture import ContainerFixture


class EtcdFixture(ContainerFixture):
    """
    A disposable single-node etcd server with authentication disabled.

    etcd has no init directory, so init scripts are rejected.
    """

    service = "etcd"

    def url(self) -> str:
        """The `host:port` address clients should dial."""
        endpoint = self.endpoint()
        return build_url(endpoint.host, endpoint.port)

    def client_url(self) -> str:
        endpoint = self.endpoint()
        return build_http_url(endpoint.host, endpoint.port)
