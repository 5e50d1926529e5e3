import io
import tempfile
from pathlib import Path

import pytest

from components.filestorageadapter.adapters.local_fs import LocalFSFileAdapter
from components.filestorageadapter.contracts import (
    ByteRange, DownloadOptions, FsAdapterConfig, ListOptions, SignedUrlOptions, UploadOptions
)
from components.filestorageadapter.errors import (
    BackendError, CapabilityUnsupported, ConfigurationError, FileNotFound, InvalidRequest, MoveError
)


@pytest.fixture
def root():
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp)


@pytest.fixture
def adapter(root):
    return LocalFSFileAdapter(FsAdapterConfig(root_dir=str(root)))


@pytest.mark.asyncio
async def test_upload_download_roundtrip_and_sidecar(adapter, root):
    data = b"hello world" * 100
    meta = await adapter.upload(
        "folder/hello.bin", data,
        UploadOptions(content_type="application/x-test", metadata={"Owner": "ana", "n": 3}),
    )
    assert meta.size_in_bytes == len(data)
    assert meta.name == "hello.bin"
    assert meta.key == "folder/hello.bin"
    assert meta.mime_type == "application/x-test"
    assert (root / "folder" / "hello.bin").read_bytes() == data
    assert (root / "folder" / "hello.bin.meta.json").exists()

    got = await adapter.download("folder/hello.bin")
    assert got.content == data
    assert got.size_in_bytes == len(data)
    assert got.mime_type == "application/x-test"
    assert got.custom_metadata == {"Owner": "ana", "n": 3}


@pytest.mark.asyncio
async def test_upload_accepts_streams_and_file_objects(adapter):
    async def chunks():
        yield b"ab"
        yield b"cd"

    meta = await adapter.upload("stream.bin", chunks())
    assert meta.size_in_bytes == 4
    meta = await adapter.upload("file.txt", io.BytesIO(b"from a file"))
    assert meta.mime_type == "text/plain"
    assert (await adapter.download("stream.bin")).content == b"abcd"
    assert (await adapter.download("file.txt")).content == b"from a file"


@pytest.mark.asyncio
async def test_exists_tracks_upload_and_delete(adapter):
    assert await adapter.exists("x.txt") is False
    assert await adapter.exists("x.txt") is False
    await adapter.upload("x.txt", b"x")
    assert await adapter.exists("x.txt") is True
    assert await adapter.exists("x.txt") is True
    assert await adapter.delete("x.txt") is True
    assert await adapter.exists("x.txt") is False


@pytest.mark.asyncio
async def test_range_download_is_inclusive(adapter):
    await adapter.upload("file.bin", b"hello world")
    got = await adapter.download("file.bin", DownloadOptions(range=ByteRange(start_byte=0, end_byte=4)))
    assert got.content == b"hello"
    assert got.size_in_bytes == 11

    tail = await adapter.download("file.bin", DownloadOptions(range=ByteRange(start_byte=6, end_byte=99)))
    assert tail.content == b"world"

    with pytest.raises(InvalidRequest):
        await adapter.download("file.bin", DownloadOptions(range=ByteRange(start_byte=11, end_byte=20)))


@pytest.mark.asyncio
async def test_not_found_semantics(adapter):
    assert await adapter.get_metadata("missing.txt") is None
    assert await adapter.delete("missing.txt") is False
    assert await adapter.get_metadata("missing.txt/below") is None
    with pytest.raises(FileNotFound):
        await adapter.download("missing.txt")
    with pytest.raises(FileNotFound):
        await adapter.copy("missing.txt", "other.txt")


@pytest.mark.asyncio
async def test_metadata_falls_back_when_sidecar_missing_or_corrupt(adapter, root):
    await adapter.upload("docs/report.pdf", b"%PDF-1.7", UploadOptions(content_type="application/x-custom"))
    sidecar = root / "docs" / "report.pdf.meta.json"

    sidecar.write_text("{not json")
    meta = await adapter.get_metadata("docs/report.pdf")
    assert meta is not None
    assert meta.mime_type == "application/pdf"
    assert meta.size_in_bytes == 8
    assert meta.name == "report.pdf"

    sidecar.unlink()
    (root / "docs" / "raw.txt").write_bytes(b"written outside the adapter")
    meta = await adapter.get_metadata("docs/raw.txt")
    assert meta.mime_type == "text/plain"
    assert meta.size_in_bytes == len(b"written outside the adapter")
    assert meta.uploaded_at.tzinfo is not None


@pytest.mark.asyncio
async def test_delete_removes_sidecar_and_prunes_empty_dirs(adapter, root):
    await adapter.upload("a/b/c.txt", b"c")
    await adapter.upload("a/keep.txt", b"k")
    assert await adapter.delete("a/b/c.txt") is True
    assert not (root / "a" / "b").exists()
    assert (root / "a" / "keep.txt").exists()
    assert not (root / "a" / "b" / "c.txt.meta.json").exists()


@pytest.mark.asyncio
async def test_list_pagination_enumerates_each_object_once(adapter):
    keys = [f"batch/{i:02d}.txt" for i in range(7)] + ["batch/sub/deep.txt", "batch-x/other.txt"]
    for k in keys:
        await adapter.upload(k, k.encode())
    await adapter.upload("elsewhere.txt", b"no")

    seen = []
    cursor = None
    pages = 0
    while True:
        res = await adapter.list(ListOptions(prefix="batch/", limit=3, cursor=cursor))
        pages += 1
        assert len(res.files) <= 3
        seen.extend(f.key for f in res.files)
        if not res.has_more:
            assert res.next_cursor is None
            break
        assert res.next_cursor
        cursor = res.next_cursor

    expected = [k for k in keys if k.startswith("batch/")]
    assert sorted(seen) == sorted(expected)
    assert len(seen) == len(set(seen))
    assert pages == 3


@pytest.mark.asyncio
async def test_list_exact_multiple_of_limit_reports_no_more(adapter):
    for i in range(4):
        await adapter.upload(f"p/{i}.bin", b"x")
    first = await adapter.list(ListOptions(prefix="p/", limit=2))
    assert first.has_more is True
    second = await adapter.list(ListOptions(prefix="p/", limit=2, cursor=first.next_cursor))
    assert [f.key for f in second.files] == ["p/2.bin", "p/3.bin"]
    assert second.has_more is False


@pytest.mark.asyncio
async def test_list_cursor_survives_deletion_of_last_seen_key(adapter):
    for name in ["a.txt", "b.txt", "c.txt", "d.txt"]:
        await adapter.upload(f"q/{name}", b"1")
    page = await adapter.list(ListOptions(prefix="q/", limit=2))
    assert [f.name for f in page.files] == ["a.txt", "b.txt"]
    await adapter.delete("q/b.txt")
    rest = await adapter.list(ListOptions(prefix="q/", limit=10, cursor=page.next_cursor))
    assert [f.name for f in rest.files] == ["c.txt", "d.txt"]


@pytest.mark.asyncio
async def test_list_prefix_is_a_string_prefix(adapter):
    for k in ["docs/a.txt", "docs/ab/c.txt", "docs/b.txt", "docsx.txt"]:
        await adapter.upload(k, b"1")
    res = await adapter.list(ListOptions(prefix="docs/a"))
    assert sorted(f.key for f in res.files) == ["docs/a.txt", "docs/ab/c.txt"]
    res = await adapter.list()
    assert len(res.files) == 4
    assert not any(f.name.endswith(".meta.json") for f in res.files)


@pytest.mark.asyncio
async def test_list_rejects_garbage_cursor(adapter):
    with pytest.raises(InvalidRequest):
        await adapter.list(ListOptions(cursor="%%%"))


@pytest.mark.asyncio
async def test_base_path_namespaces_keys(root):
    a = LocalFSFileAdapter(FsAdapterConfig(root_dir=str(root), base_path="tenant"))
    b = LocalFSFileAdapter(FsAdapterConfig(root_dir=str(root), base_path="tenant2"))
    await a.upload("nested/file.txt", b"a")
    await b.upload("file.txt", b"b")
    assert (root / "tenant" / "nested" / "file.txt").exists()

    res = await a.list()
    assert [f.key for f in res.files] == ["nested/file.txt"]
    meta = await a.get_metadata("nested/file.txt")
    assert meta.key == "nested/file.txt"
    assert await a.exists("file.txt") is False


@pytest.mark.asyncio
async def test_signed_urls(root):
    plain = LocalFSFileAdapter(FsAdapterConfig(root_dir=str(root)))
    with pytest.raises(ConfigurationError):
        await plain.get_signed_url("a.txt", SignedUrlOptions(expires_in=60))
    with pytest.raises(CapabilityUnsupported):
        await plain.get_signed_url_upload("a.txt", SignedUrlOptions(expires_in=60))

    public = LocalFSFileAdapter(
        FsAdapterConfig(root_dir=str(root), base_url="https://cdn.example.com/files/", base_path="pub")
    )
    url = await public.get_signed_url("dir/my file.txt", SignedUrlOptions(expires_in=60))
    assert url == "https://cdn.example.com/files/pub/dir/my%20file.txt"


@pytest.mark.asyncio
async def test_copy_preserves_content_and_source(adapter):
    await adapter.upload("a.txt", b"original content", UploadOptions(metadata={"k": "v"}))
    meta = await adapter.copy("a.txt", "copies/b.txt")
    assert meta.name == "b.txt"
    assert meta.key == "copies/b.txt"
    assert meta.custom_metadata == {"k": "v"}

    a = await adapter.download("a.txt")
    b = await adapter.download("copies/b.txt")
    assert a.content == b.content == b"original content"


@pytest.mark.asyncio
async def test_move(adapter):
    await adapter.upload("source.txt", b"move me")
    meta = await adapter.move("source.txt", "moved.txt")
    assert meta.name == "moved.txt"
    assert await adapter.exists("source.txt") is False
    assert (await adapter.download("moved.txt")).content == b"move me"

    with pytest.raises(FileNotFound):
        await adapter.move("source.txt", "again.txt")
    with pytest.raises(InvalidRequest):
        await adapter.move("moved.txt", "./moved.txt")


@pytest.mark.asyncio
async def test_move_rolls_back_destination_when_source_delete_fails(adapter, monkeypatch):
    await adapter.upload("src.txt", b"payload")
    original_delete = adapter.delete

    async def flaky_delete(key):
        if key == "src.txt":
            raise BackendError("disk on fire")
        return await original_delete(key)

    monkeypatch.setattr(adapter, "delete", flaky_delete)
    with pytest.raises(MoveError) as exc:
        await adapter.move("src.txt", "dst.txt")

    assert exc.value.rolled_back is True
    assert "disk on fire" in str(exc.value)
    assert await adapter.exists("src.txt") is True
    assert await adapter.exists("dst.txt") is False


@pytest.mark.asyncio
async def test_move_reports_duplicate_when_rollback_fails(adapter, monkeypatch):
    await adapter.upload("src.txt", b"payload")

    async def broken_delete(key):
        raise BackendError(f"cannot delete {key}")

    monkeypatch.setattr(adapter, "delete", broken_delete)
    with pytest.raises(MoveError) as exc:
        await adapter.move("src.txt", "dst.txt")

    err = exc.value
    assert err.rolled_back is False
    assert err.duplicate_possible is True
    assert "cannot delete src.txt" in str(err)
    assert "both source and destination may now exist" in str(err)
    assert (await adapter.download("dst.txt")).content == b"payload"
    assert await adapter.exists("src.txt") is True


@pytest.mark.asyncio
async def test_invalid_keys_are_rejected(adapter):
    with pytest.raises(InvalidRequest):
        await adapter.upload("../escape.txt", b"x")
    with pytest.raises(InvalidRequest):
        await adapter.upload("a/../../escape.txt", b"x")
    with pytest.raises(InvalidRequest):
        await adapter.upload("notes.meta.json", b"x")
    with pytest.raises(InvalidRequest):
        await adapter.upload("", b"x")


@pytest.mark.asyncio
async def test_list_limit_above_backend_page_size_returns_everything(adapter):
    for i in range(3):
        await adapter.upload(f"many/{i}.txt", b"x")
    page = await adapter.list(ListOptions(limit=5000))
    assert [f.key for f in page.files] == ["many/0.txt", "many/1.txt", "many/2.txt"]
    assert page.has_more is False


@pytest.mark.asyncio
@pytest.mark.parametrize("prefix", ["docs//", "docs\\", "/docs/", "./docs/"])
async def test_list_prefix_separators_are_normalized(adapter, prefix):
    await adapter.upload("docs/a.txt", b"a")
    await adapter.upload("docs/b.txt", b"b")
    await adapter.upload("docsx.txt", b"x")

    first = await adapter.list(ListOptions(prefix=prefix, limit=1))
    assert [f.key for f in first.files] == ["docs/a.txt"]
    rest = await adapter.list(ListOptions(prefix=prefix, limit=1, cursor=first.next_cursor))
    assert [f.key for f in rest.files] == ["docs/b.txt"]
    assert await adapter.exists(rest.files[0].key)


@pytest.mark.asyncio
async def test_keys_are_normalized_without_base_path(adapter):
    meta = await adapter.upload("/nested//file.txt", b"n")
    assert meta.key == "nested/file.txt"
    listed = await adapter.list()
    assert [f.key for f in listed.files] == ["nested/file.txt"]
    assert (await adapter.download(listed.files[0].key)).content == b"n"


@pytest.mark.asyncio
async def test_aclose_is_a_no_op(adapter):
    await adapter.upload("a.txt", b"a")
    await adapter.aclose()
    assert await adapter.exists("a.txt")
