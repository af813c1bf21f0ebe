from unittest.mock import MagicMock

import httpx
import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from asset_store import HttpAssetStore
from aws_client import S3AssetStore, sanitize_filename
from conftest import make_file
from errors import ClientRejected, InvalidResponse, ServerError, UploadTimeout

ENDPOINT = "https://shop.example.com/api/cloudinary/upload"


def http_store(handler) -> HttpAssetStore:
    return HttpAssetStore(ENDPOINT, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_http_upload_sends_multipart_image_field():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["content_type"] = request.headers["content-type"]
        seen["body"] = request.content
        return httpx.Response(
            200,
            json={"success": True, "imageUrl": "https://cdn.example.com/a.jpg", "publicId": "folder/a"},
        )

    store = http_store(handler)
    payload = await store.upload(make_file("a.jpg", size=2048))
    await store.aclose()

    assert payload["publicId"] == "folder/a"
    assert seen["method"] == "POST"
    assert seen["content_type"].startswith("multipart/form-data")
    assert b'name="image"; filename="a.jpg"' in seen["body"]


@pytest.mark.asyncio
async def test_http_4xx_maps_to_client_rejected_with_server_message():
    store = http_store(lambda request: httpx.Response(400, json={"error": "Invalid file type"}))

    with pytest.raises(ClientRejected) as excinfo:
        await store.upload(make_file("a.jpg"))

    assert excinfo.value.message == "Invalid file type"
    assert excinfo.value.status_code == 400
    assert excinfo.value.retryable is False


@pytest.mark.asyncio
async def test_http_5xx_maps_to_retryable_server_error():
    store = http_store(lambda request: httpx.Response(503, text="busy"))

    with pytest.raises(ServerError) as excinfo:
        await store.upload(make_file("a.jpg"))

    assert excinfo.value.retryable is True
    assert excinfo.value.status_code == 503


@pytest.mark.asyncio
async def test_http_transport_errors_are_retryable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ServerError):
        await http_store(handler).upload(make_file("a.jpg"))


@pytest.mark.asyncio
async def test_http_timeout_maps_to_upload_timeout():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(UploadTimeout):
        await http_store(handler).upload(make_file("a.jpg"))


@pytest.mark.asyncio
async def test_http_non_json_success_is_invalid_response():
    store = http_store(lambda request: httpx.Response(200, text="<html>ok</html>"))

    with pytest.raises(InvalidResponse):
        await store.upload(make_file("a.jpg"))


@pytest.mark.asyncio
async def test_http_delete_passes_public_id():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["public_id"] = request.url.params.get("publicId")
        return httpx.Response(200, json={"success": True})

    await http_store(handler).delete("folder/a b")

    assert seen == {"method": "DELETE", "public_id": "folder/a b"}


@pytest.mark.asyncio
async def test_http_delete_failure_raises():
    store = http_store(lambda request: httpx.Response(500, json={"error": "Failed to delete image"}))

    with pytest.raises(httpx.HTTPStatusError):
        await store.delete("folder/a")


def test_http_store_from_env(monkeypatch):
    monkeypatch.delenv("ASSET_STORE_URL", raising=False)
    assert HttpAssetStore.from_env() is None

    monkeypatch.setenv("ASSET_STORE_URL", ENDPOINT)
    monkeypatch.setenv("ASSET_STORE_TIMEOUT_SECONDS", "nope")
    store = HttpAssetStore.from_env()
    assert store.endpoint == ENDPOINT
    assert store.timeout_seconds == 30.0


def test_sanitize_filename():
    assert sanitize_filename("my photo (1).jpg") == "my_photo__1_.jpg"


@pytest.mark.asyncio
async def test_s3_upload_returns_url_and_key():
    client = MagicMock()
    store = S3AssetStore("shop-assets", s3_client=client, region="eu-west-1")

    payload = await store.upload(make_file("hero shot.png", content_type="image/png"))

    kwargs = client.put_object.call_args.kwargs
    assert kwargs["Bucket"] == "shop-assets"
    assert kwargs["ContentType"] == "image/png"
    assert kwargs["Key"].startswith("assets/")
    assert kwargs["Key"].endswith("_hero_shot.png")
    assert payload["remoteId"] == kwargs["Key"]
    assert payload["url"] == f"https://shop-assets.s3.eu-west-1.amazonaws.com/{kwargs['Key']}"
    assert payload["format"] == "png"


@pytest.mark.asyncio
async def test_s3_client_errors_are_classified():
    client = MagicMock()
    client.put_object.side_effect = ClientError(
        {"Error": {"Code": "AccessDenied"}, "ResponseMetadata": {"HTTPStatusCode": 403}},
        "PutObject",
    )
    store = S3AssetStore("shop-assets", s3_client=client, public_base_url="https://img.example.com/")

    with pytest.raises(ClientRejected) as excinfo:
        await store.upload(make_file("a.jpg"))
    assert "AccessDenied" in excinfo.value.message

    client.put_object.side_effect = ClientError(
        {"Error": {"Code": "SlowDown"}, "ResponseMetadata": {"HTTPStatusCode": 503}},
        "PutObject",
    )
    with pytest.raises(ServerError):
        await store.upload(make_file("a.jpg"))

    client.put_object.side_effect = EndpointConnectionError(endpoint_url="https://s3.example.com")
    with pytest.raises(ServerError):
        await store.upload(make_file("a.jpg"))


@pytest.mark.asyncio
async def test_s3_delete_uses_object_key():
    client = MagicMock()
    store = S3AssetStore("shop-assets", s3_client=client, public_base_url="https://img.example.com")

    await store.delete("assets/2026/01/01/abc_a.jpg")

    client.delete_object.assert_called_once_with(Bucket="shop-assets", Key="assets/2026/01/01/abc_a.jpg")
