import logging
from urllib.parse import urlparse, urlunparse

import httpx

from ociboot.errors import AuthenticationError, NotFoundError
from ociboot.oci.descriptor import (
    MEDIA_TYPE_IMAGE_INDEX,
    MEDIA_TYPE_IMAGE_MANIFEST,
    Descriptor,
    digest_from_bytes,
)

logger = logging.getLogger(__name__)

DOCKER_HUB = "registry-1.docker.io"

MANIFEST_ACCEPT = ", ".join(
    [
        MEDIA_TYPE_IMAGE_MANIFEST,
        MEDIA_TYPE_IMAGE_INDEX,
        "application/vnd.docker.distribution.manifest.v2+json",
        "application/vnd.docker.distribution.manifest.list.v2+json",
    ]
)


def _clean_url(registry_url: str, insecure: bool = False) -> str:
    if "://" not in registry_url:
        scheme = "http" if insecure else "https"
        registry_url = f"{scheme}://{registry_url}"
    parts = urlparse(registry_url)
    if parts.netloc == "docker.io":
        parts = parts._replace(netloc=DOCKER_HUB)
    return urlunparse(parts).rstrip("/")


def _parse_www_auth(www_authenticate: str) -> dict[str, str]:
    """Parse the WWW-Authenticate header"""
    result = {}
    for item in www_authenticate.removeprefix("Bearer ").split(","):
        if "=" not in item:
            continue
        key, value = item.split("=", 1)
        result[key.strip()] = value.strip('"')
    return result


class BearerAuth(httpx.Auth):
    """Attaches HTTP Bearer Authentication to every request."""

    def __init__(self, token: str):
        self.token = token

    def auth_flow(self, request):
        request.headers["Authorization"] = f"Bearer {self.token}"
        yield request


class Client:
    """Client for the OCI distribution API of a single registry."""

    def __init__(
        self,
        registry_url: str,
        username: str | None = None,
        password: str | None = None,
        insecure: bool = False,
        transport: httpx.BaseTransport | None = None,
    ):
        self.registry_url = _clean_url(registry_url, insecure=insecure)
        self.username = username
        self.password = password
        self.insecure = insecure
        self._transport = transport
        self._session = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def session(self) -> httpx.Client:
        if self._session is None:
            self._session = httpx.Client(
                follow_redirects=True,
                max_redirects=2,
                verify=not self.insecure,
                transport=self._transport,
            )
            self.try_authentication()
        return self._session

    def head(self, uri, **kwargs):
        return self.session.head(f"{self.registry_url}{uri}", **kwargs)

    def get(self, uri, **kwargs):
        return self.session.get(f"{self.registry_url}{uri}", **kwargs)

    def post(self, uri, **kwargs):
        return self.session.post(f"{self.registry_url}{uri}", **kwargs)

    def put(self, uri, **kwargs):
        return self.session.put(f"{self.registry_url}{uri}", **kwargs)

    def close(self):
        if self._session is not None:
            self._session.close()
            self._session = None

    def try_authentication(self):
        result = self.get("/v2/")
        if result.status_code == 401:
            header = result.headers.get("WWW-Authenticate", "")
            if not header.startswith("Bearer"):
                if not self.password:
                    raise AuthenticationError(
                        f"{self.registry_url} requires authentication, "
                        f"provide a username and/or password."
                    )
                self.session.auth = (self.username or "", self.password)
                return
            www_authenticate = _parse_www_auth(header)
            logger.debug(www_authenticate)
            self.authenticate(
                token_url=www_authenticate["realm"],
                service=www_authenticate.get("service"),
                scope=www_authenticate.get("scope"),
            )
        else:
            result.raise_for_status()

    def authenticate(self, token_url, service, scope):
        """Use the token api with basic authentication to get a token

        ref: https://distribution.github.io/distribution/spec/auth/token/
        """
        if not self.password:
            raise AuthenticationError(
                f"{self.registry_url} requires authentication, "
                f"provide a username and/or password."
            )
        params = {"grant_type": "password", "client_id": self.username}
        if service:
            params["service"] = service
        if scope:
            params["scope"] = scope
        response = self.session.get(
            token_url,
            params=params,
            auth=(self.username or "", self.password),
        )
        if response.status_code in (401, 403):
            raise AuthenticationError(f"Authentication to {token_url} failed")
        response.raise_for_status()
        body = response.json()
        token = body.get("token") or body.get("access_token")
        if not token:
            raise AuthenticationError(f"No token returned by {token_url}")
        self.session.auth = BearerAuth(token)

    def _get_manifest(self, name: str, reference: str) -> httpx.Response:
        result = self.get(
            f"/v2/{name}/manifests/{reference}",
            headers={"Accept": MANIFEST_ACCEPT},
        )
        if result.status_code == 404:
            raise NotFoundError(f"Manifest {name}:{reference} not found")
        if result.status_code == 403:
            logger.debug(result.headers)
        result.raise_for_status()
        return result

    def resolve_manifest(self, name: str, reference: str) -> Descriptor:
        """Resolve a tag or digest to the descriptor of the manifest it points to"""
        result = self._get_manifest(name, reference)
        data = result.content
        media_type = result.headers.get("Content-Type", "").split(";")[0].strip()
        if not media_type:
            media_type = _media_type_from_body(result)
        digest = result.headers.get("Docker-Content-Digest") or digest_from_bytes(data)
        return Descriptor(mediaType=media_type, digest=digest, size=len(data))

    def pull_manifest(self, name: str, reference: str) -> bytes:
        return self._get_manifest(name, reference).content

    def pull_blob(self, name: str, digest: str) -> bytes:
        result = self.get(f"/v2/{name}/blobs/{digest}")
        if result.status_code == 404:
            raise NotFoundError(f"Blob {name}@{digest} not found")
        result.raise_for_status()
        return result.content

    def request_info(self, uri: str, headers: dict[str, str] | None = None) -> dict:
        """URL and headers another client needs to fetch `uri`, authorization included"""
        response = self.head(uri, headers=headers)
        if response.status_code == 405:
            # Registries are not required to implement HEAD
            response = self.get(uri, headers=headers)
        if response.status_code == 404:
            raise NotFoundError(f"{uri} not found on {self.registry_url}")
        response.raise_for_status()
        request = response.request
        return {
            "headers": {
                key: request.headers[key]
                for key in ("Accept", "Authorization")
                if key in request.headers
            },
            "url": str(request.url),
        }

    def push_blob(self, name: str, blob: bytes, digest: str):
        """Push a blob for repository `name`

        ref: https://github.com/opencontainers/distribution-spec/blob/main/spec.md#pushing-blobs
        """
        response = self.head(f"/v2/{name}/blobs/{digest}")
        if response.status_code == 200:
            logger.info("Blob already exists: %s@%s", name, digest)
            return

        # POST then PUT upload
        response = self.post(
            f"/v2/{name}/blobs/uploads/",
            headers={"content-type": "application/octet-stream"},
        )
        response.raise_for_status()
        location = response.headers["location"]
        if location.startswith("/"):
            put = self.put
        else:
            put = self.session.put
        response = put(
            location,
            content=blob,
            headers={"content-type": "application/octet-stream"},
            params={"digest": digest},
        )
        response.raise_for_status()
        logger.debug("Pushed blob %s@%s", name, digest)

    def push_manifest(self, name: str, reference: str, data: bytes, media_type: str):
        """Push a manifest for repository `name` under `reference` (tag or digest)

        ref: https://github.com/opencontainers/distribution-spec/blob/main/spec.md#pushing-manifests
        """
        uri = f"/v2/{name}/manifests/{reference}"
        if reference.startswith("sha256:"):
            response = self.head(uri, headers={"Accept": media_type})
            if response.status_code == 200:
                logger.info("Manifest already exists: %s@%s", name, reference)
                return

        logger.debug("Pushing manifest: %s", data)
        response = self.put(uri, content=data, headers={"content-type": media_type})
        if (
            not response.is_success
            and "application/json" in response.headers.get("Content-Type", "")
        ):
            logger.error(response.json())
        response.raise_for_status()


def _media_type_from_body(response: httpx.Response) -> str:
    media_type = response.json().get("mediaType")
    if media_type:
        return media_type
    return MEDIA_TYPE_IMAGE_MANIFEST
