"""Tests for the /song and /art request pipelines, without a socket."""

import pytest

from byte_ranges import ByteRange
from media_server import (
    BadRequest,
    InternalError,
    NotFound,
    RangeNotSatisfiable,
    plan_art_response,
    plan_song_response,
)


@pytest.mark.asyncio
async def test_song_missing_id(catalog, files):
    with pytest.raises(BadRequest):
        await plan_song_response(catalog, files, "")
    assert catalog.lookups == []


@pytest.mark.asyncio
async def test_song_unknown_id_opens_nothing(catalog, files):
    with pytest.raises(NotFound) as exc_info:
        await plan_song_response(catalog, files, "abc")
    assert exc_info.value.status == 404
    assert files.opened == []


@pytest.mark.asyncio
async def test_song_missing_file(catalog, files):
    with pytest.raises(NotFound, match="File not found"):
        await plan_song_response(catalog, files, "missing")


@pytest.mark.asyncio
async def test_song_unreadable_file(catalog, files):
    with pytest.raises(InternalError):
        await plan_song_response(catalog, files, "broken")


@pytest.mark.asyncio
async def test_song_without_range_is_full(catalog, files):
    plan = await plan_song_response(catalog, files, "xyz")
    assert plan.window is None
    assert plan.content_type == "audio/mpeg"
    assert not plan.source.closed
    plan.source.close()


@pytest.mark.asyncio
async def test_song_content_type_comes_from_resource(catalog, files):
    plan = await plan_song_response(catalog, files, "flac")
    assert plan.content_type == "audio/flac"
    plan.source.close()


@pytest.mark.asyncio
async def test_song_with_range(catalog, files):
    plan = await plan_song_response(catalog, files, "xyz", "bytes=-500")
    assert plan.window == ByteRange(99_500, 99_999)
    plan.source.close()


@pytest.mark.asyncio
async def test_song_serves_first_range_only(catalog, files):
    plan = await plan_song_response(catalog, files, "xyz", "bytes=10-19,50-59")
    assert plan.window == ByteRange(10, 19)
    plan.source.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("header", ["bytes=abc", "bytes=", "lines=1-2"])
async def test_song_bad_range_closes_source(catalog, files, header):
    with pytest.raises(BadRequest, match="Invalid range"):
        await plan_song_response(catalog, files, "xyz", header)
    assert len(files.opened) == 1
    assert files.opened[0].closed
    assert files.opened[0].buffer.close_calls == 1


@pytest.mark.asyncio
async def test_song_unsatisfiable_range_closes_source(catalog, files):
    with pytest.raises(RangeNotSatisfiable) as exc_info:
        await plan_song_response(catalog, files, "xyz", "bytes=200000-")
    assert exc_info.value.status == 416
    assert exc_info.value.headers == {"Content-Range": "bytes */100000"}
    assert files.opened[0].closed


@pytest.mark.asyncio
async def test_art_missing_id(catalog, files):
    with pytest.raises(BadRequest):
        await plan_art_response(catalog, files, "")


@pytest.mark.asyncio
@pytest.mark.parametrize("song_id", ["abc", "noart"])
async def test_art_not_found(catalog, files, song_id):
    with pytest.raises(NotFound, match="Album art not found"):
        await plan_art_response(catalog, files, song_id)
    assert files.opened == []


@pytest.mark.asyncio
@pytest.mark.parametrize("song_id", ["missing", "broken"])
async def test_art_open_failure_is_internal(catalog, files, song_id):
    with pytest.raises(InternalError) as exc_info:
        await plan_art_response(catalog, files, song_id)
    assert exc_info.value.status == 500


@pytest.mark.asyncio
async def test_art_plan(catalog, files, art_bytes):
    plan = await plan_art_response(catalog, files, "xyz")
    assert plan.window is None
    assert plan.content_type == "image/jpeg"
    assert plan.source.size == len(art_bytes)
    plan.source.close()


@pytest.mark.asyncio
async def test_art_type_guessed_from_locator(catalog, files):
    plan = await plan_art_response(catalog, files, "pngart", "image/jpeg")
    assert plan.content_type == "image/png"
    plan.source.close()


@pytest.mark.asyncio
async def test_art_type_falls_back_when_unknown(catalog, files):
    plan = await plan_art_response(catalog, files, "rawart", "image/webp")
    assert plan.content_type == "image/webp"
    plan.source.close()
