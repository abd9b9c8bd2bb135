"""Image rehosting client.

Downloads externally hosted product images and uploads them to the
catalog's blob store, plus URL rewriting for resized renditions.
"""

import hashlib
from dataclasses import dataclass
from typing import Protocol

import httpx
import structlog

from plumbcat.domain.categories import slugify
from plumbcat.domain.exceptions import ExternalCollaboratorError
from plumbcat.infrastructure.config import settings

logger = structlog.get_logger()

ALLOWED_CONTENT_TYPES = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}

KEY_PREFIX = "products"


@dataclass
class RehostResult:
    """Outcome of one rehost call."""

    success: bool
    hosted_url: str | None = None
    error: str | None = None
    size: int | None = None
    content_type: str | None = None


class ImageRehoster(Protocol):
    """Contract of the image hosting collaborator."""

    async def rehost(self, source_url: str, context_name: str, index: int) -> RehostResult:
        ...

    def get_optimized_url(
        self,
        hosted_url: str,
        width: int | None = None,
        height: int | None = None,
    ) -> str:
        ...


def build_object_key(source_url: str, context_name: str, index: int, extension: str) -> str:
    """Object key for a rehosted image.

    The key depends only on its inputs, so rehosting the same image for the
    same product twice overwrites one object.

    Args:
        source_url: Original image URL.
        context_name: Usually the product name.
        index: Position of the image within the product.
        extension: File extension without the dot.

    Returns:
        Key such as ``products/grifo-monomando-2-1a2b3c4d5e.jpg``.
    """
    clean_name = slugify(context_name, fallback="producto")[:50].strip("-")
    digest = hashlib.sha1(source_url.encode("utf-8")).hexdigest()[:10]
    return f"{KEY_PREFIX}/{clean_name}-{index}-{digest}.{extension}"


def get_optimized_url(
    hosted_url: str,
    width: int | None = None,
    height: int | None = None,
    public_base_url: str | None = None,
) -> str:
    """Add resize parameters to a URL served by our image host.

    URLs hosted elsewhere are returned unchanged.

    Args:
        hosted_url: Image URL.
        width: Target width in pixels.
        height: Target height in pixels.
        public_base_url: Public base of the image host.

    Returns:
        Rewritten URL.
    """
    base = (public_base_url or settings.image_public_base_url).rstrip("/")
    if not hosted_url or not hosted_url.startswith(base + "/"):
        return hosted_url

    params: dict[str, str] = {"fit": "cover", "f": "auto", "q": "80"}
    if width:
        params["w"] = str(width)
    if height:
        params["h"] = str(height)
    return str(httpx.URL(hosted_url).copy_merge_params(params))


class HttpImageRehoster:
    """Rehoster backed by an HTTP blob store accepting ``PUT`` uploads.

    Example usage:
        rehoster = HttpImageRehoster()
        try:
            result = await rehoster.rehost(url, "Grifo monomando", 0)
        finally:
            await rehoster.close()
    """

    def __init__(
        self,
        upload_url: str | None = None,
        public_base_url: str | None = None,
        token: str | None = None,
        max_bytes: int | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the rehoster.

        Args:
            upload_url: Base URL objects are PUT under.
            public_base_url: Base URL objects are served from.
            token: Bearer token for uploads.
            max_bytes: Largest accepted image.
            timeout: Download and upload timeout in seconds.
            transport: Optional httpx transport (tests).
        """
        self.upload_url = (upload_url or settings.image_upload_url).rstrip("/")
        self.public_base_url = (public_base_url or settings.image_public_base_url).rstrip("/")
        self.token = token if token is not None else settings.image_upload_token
        self.max_bytes = max_bytes or settings.image_max_bytes
        self.timeout = timeout or settings.image_download_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
                headers={"User-Agent": "plumbcat-image-rehoster/0.1"},
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpImageRehoster":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def download(self, source_url: str) -> tuple[bytes, str]:
        """Download an image, enforcing type and size limits.

        Returns:
            The body and its content type.

        Raises:
            ExternalCollaboratorError: On HTTP errors, timeouts, a non-image
                content type or a body above the size ceiling.
        """
        client = await self._get_client()
        try:
            async with client.stream("GET", source_url) as response:
                if response.status_code >= 400:
                    raise ExternalCollaboratorError(
                        "image-download",
                        f"HTTP {response.status_code}",
                        url=source_url,
                    )

                content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
                if not content_type.startswith("image/"):
                    raise ExternalCollaboratorError(
                        "image-download",
                        f"not an image: {content_type or 'unknown content type'}",
                        url=source_url,
                    )
                if content_type not in ALLOWED_CONTENT_TYPES:
                    raise ExternalCollaboratorError(
                        "image-download",
                        f"unsupported image type {content_type}",
                        url=source_url,
                    )

                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > self.max_bytes:
                    raise ExternalCollaboratorError(
                        "image-download",
                        f"image larger than {self.max_bytes} bytes",
                        url=source_url,
                    )

                chunks = []
                received = 0
                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    if received > self.max_bytes:
                        raise ExternalCollaboratorError(
                            "image-download",
                            f"image larger than {self.max_bytes} bytes",
                            url=source_url,
                        )
                    chunks.append(chunk)
        except httpx.TimeoutException as e:
            raise ExternalCollaboratorError("image-download", "timed out", url=source_url) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ExternalCollaboratorError("image-download", str(e) or type(e).__name__, url=source_url) from e

        return b"".join(chunks), content_type

    async def upload(self, key: str, body: bytes, content_type: str) -> str:
        """Upload an object and return its public URL.

        Raises:
            ExternalCollaboratorError: If the blob store rejects the upload.
        """
        client = await self._get_client()
        headers = {"Content-Type": content_type}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            response = await client.put(f"{self.upload_url}/{key}", content=body, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ExternalCollaboratorError("image-upload", str(e) or type(e).__name__, key=key) from e
        if response.status_code >= 400:
            raise ExternalCollaboratorError(
                "image-upload",
                f"HTTP {response.status_code}: {response.text[:200]}",
                key=key,
            )
        return f"{self.public_base_url}/{key}"

    def is_hosted(self, url: str) -> bool:
        """Whether ``url`` already points at our image host."""
        return bool(url) and url.startswith(self.public_base_url + "/")

    async def rehost(self, source_url: str, context_name: str, index: int) -> RehostResult:
        """Copy one external image to the blob store.

        Never raises for collaborator failures; they come back as an
        unsuccessful result.
        """
        if self.is_hosted(source_url):
            return RehostResult(success=True, hosted_url=source_url)

        try:
            body, content_type = await self.download(source_url)
            key = build_object_key(
                source_url, context_name, index, ALLOWED_CONTENT_TYPES[content_type]
            )
            hosted_url = await self.upload(key, body, content_type)
        except ExternalCollaboratorError as e:
            logger.warning(
                "Image rehost failed",
                source_url=source_url,
                collaborator=e.collaborator,
                error=e.message,
            )
            return RehostResult(success=False, error=e.message)

        logger.debug(
            "Image rehosted",
            source_url=source_url,
            hosted_url=hosted_url,
            size=len(body),
        )
        return RehostResult(
            success=True,
            hosted_url=hosted_url,
            size=len(body),
            content_type=content_type,
        )

    def get_optimized_url(
        self,
        hosted_url: str,
        width: int | None = None,
        height: int | None = None,
    ) -> str:
        return get_optimized_url(hosted_url, width, height, self.public_base_url)


class DryRunImageRehoster:
    """Rehoster that uploads nothing and reports the original URL back."""

    def __init__(self) -> None:
        self.requests: list[tuple[str, str, int]] = []

    async def rehost(self, source_url: str, context_name: str, index: int) -> RehostResult:
        self.requests.append((source_url, context_name, index))
        return RehostResult(success=True, hosted_url=source_url)

    def get_optimized_url(
        self,
        hosted_url: str,
        width: int | None = None,
        height: int | None = None,
    ) -> str:
        return get_optimized_url(hosted_url, width, height)

    async def close(self) -> None:
        return None
