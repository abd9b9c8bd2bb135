"""Tests for the image rehosting client."""

import httpx
import pytest

from plumbcat.infrastructure.images import (
    DryRunImageRehoster,
    HttpImageRehoster,
    build_object_key,
    get_optimized_url,
)

UPLOAD = "https://blob.test/upload"
PUBLIC = "https://cdn.test/catalog"
PNG = b"\x89PNG\r\n\x1a\n" + b"0" * 64


def make_rehoster(handler, **kwargs) -> HttpImageRehoster:
    return HttpImageRehoster(
        upload_url=UPLOAD,
        public_base_url=PUBLIC,
        token=kwargs.pop("token", "secret"),
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestObjectKeys:
    """Tests for build_object_key."""

    def test_key_is_deterministic(self) -> None:
        """The same inputs give the same key."""
        first = build_object_key("https://a/x.jpg", "Grifo Monomando", 2, "jpg")
        second = build_object_key("https://a/x.jpg", "Grifo Monomando", 2, "jpg")
        assert first == second
        assert first.startswith("products/grifo-monomando-2-")
        assert first.endswith(".jpg")

    def test_key_depends_on_source(self) -> None:
        """Different sources do not collide."""
        assert build_object_key("https://a/x.jpg", "Tee", 0, "jpg") != build_object_key(
            "https://a/y.jpg", "Tee", 0, "jpg"
        )


class TestOptimizedUrl:
    """Tests for get_optimized_url."""

    def test_hosted_url_gets_resize_params(self) -> None:
        """Our own URLs get width, height and format parameters."""
        url = get_optimized_url(f"{PUBLIC}/products/a.jpg", width=300, height=200, public_base_url=PUBLIC)
        params = httpx.URL(url).params
        assert params["w"] == "300"
        assert params["h"] == "200"
        assert params["fit"] == "cover"

    def test_foreign_url_is_unchanged(self) -> None:
        """URLs hosted elsewhere are returned as they are."""
        url = "https://img.example.com/a.jpg"
        assert get_optimized_url(url, width=300, public_base_url=PUBLIC) == url


class TestHttpImageRehoster:
    """Tests for HttpImageRehoster."""

    async def test_successful_rehost(self) -> None:
        """The image is downloaded and uploaded under a stable key."""
        uploads: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, content=PNG, headers={"content-type": "image/png"})
            uploads.append(request)
            return httpx.Response(201)

        async with make_rehoster(handler) as rehoster:
            result = await rehoster.rehost("https://img.example.com/a.png", "Tee", 0)

        assert result.success
        assert result.hosted_url.startswith(f"{PUBLIC}/products/tee-0-")
        assert result.hosted_url.endswith(".png")
        assert result.size == len(PNG)
        assert uploads[0].headers["authorization"] == "Bearer secret"
        assert uploads[0].headers["content-type"] == "image/png"
        assert uploads[0].content == PNG

    async def test_already_hosted(self) -> None:
        """URLs on our own host are not fetched again."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        rehoster = make_rehoster(handler)
        result = await rehoster.rehost(f"{PUBLIC}/products/a.jpg", "Tee", 0)
        assert result.success
        assert result.hosted_url == f"{PUBLIC}/products/a.jpg"

    @pytest.mark.parametrize(
        "response, message",
        [
            (httpx.Response(404), "HTTP 404"),
            (httpx.Response(200, content=b"<html>", headers={"content-type": "text/html"}), "not an image"),
            (
                httpx.Response(200, content=b"x", headers={"content-type": "image/tiff"}),
                "unsupported image type",
            ),
        ],
    )
    async def test_download_failures(self, response: httpx.Response, message: str) -> None:
        """Download problems come back as unsuccessful results."""
        rehoster = make_rehoster(lambda request: response)
        result = await rehoster.rehost("https://img.example.com/a.png", "Tee", 0)
        await rehoster.close()

        assert not result.success
        assert result.hosted_url is None
        assert message in result.error

    async def test_oversize_image(self) -> None:
        """Images above the size ceiling are rejected."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=PNG, headers={"content-type": "image/png"})

        rehoster = make_rehoster(handler, max_bytes=16)
        result = await rehoster.rehost("https://img.example.com/a.png", "Tee", 0)
        assert not result.success
        assert "larger than 16 bytes" in result.error

    async def test_timeout(self) -> None:
        """Timeouts are reported, not raised."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        rehoster = make_rehoster(handler)
        result = await rehoster.rehost("https://img.example.com/a.png", "Tee", 0)
        assert not result.success
        assert result.error == "image-download: timed out"

    async def test_malformed_url(self) -> None:
        """A URL httpx cannot parse is a failed result, not an exception."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        rehoster = make_rehoster(handler)
        result = await rehoster.rehost("http://[::1/b.jpg", "Tee", 0)
        await rehoster.close()

        assert not result.success
        assert result.error.startswith("image-download: ")

    async def test_upload_failure(self) -> None:
        """A rejected upload fails the rehost."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, content=PNG, headers={"content-type": "image/png"})
            return httpx.Response(503, text="busy")

        rehoster = make_rehoster(handler)
        result = await rehoster.rehost("https://img.example.com/a.png", "Tee", 0)
        assert not result.success
        assert result.error.startswith("image-upload: HTTP 503")


class TestDryRunImageRehoster:
    """Tests for DryRunImageRehoster."""

    async def test_echoes_source(self) -> None:
        """Nothing is uploaded and the source URL comes back."""
        rehoster = DryRunImageRehoster()
        result = await rehoster.rehost("https://img.example.com/a.png", "Tee", 1)
        assert result.success
        assert result.hosted_url == "https://img.example.com/a.png"
        assert rehoster.requests == [("https://img.example.com/a.png", "Tee", 1)]
