import json

import pytest

from reelfit.errors import EncodeError, ProbeError
from reelfit.ffmpeg import FFmpegTool, parse_image_size, parse_probe_output, slideshow_filter, slideshow_frames


def _probe_json(streams: list, fmt: dict | None = None) -> str:
    return json.dumps({"streams": streams, "format": fmt or {}})


def test_streams_are_picked_by_codec_type_not_position() -> None:
    text = _probe_json(
        [
            {"index": 0, "codec_type": "audio", "bit_rate": "128000", "duration": "30.000"},
            {"index": 1, "codec_type": "video", "bit_rate": "2500000", "duration": "29.967"},
        ]
    )

    result = parse_probe_output(text)

    assert result.audio_bitrate == 128_000
    assert result.video_bitrate == 2_500_000
    assert result.duration_seconds == pytest.approx(29.967)


def test_missing_audio_stream_means_zero_audio_bitrate() -> None:
    result = parse_probe_output(_probe_json([{"codec_type": "video", "bit_rate": "900000", "duration": "12.5"}]))

    assert result.audio_bitrate == 0
    assert result.video_bitrate == 900_000


def test_container_values_fill_missing_stream_fields() -> None:
    text = _probe_json(
        [{"codec_type": "video"}, {"codec_type": "audio", "bit_rate": "96000"}],
        {"duration": "61.2", "bit_rate": "1096000"},
    )

    result = parse_probe_output(text)

    assert result.duration_seconds == pytest.approx(61.2)
    assert result.video_bitrate == 1_000_000


@pytest.mark.parametrize(
    "text",
    [
        "not json at all",
        "[]",
        _probe_json([{"codec_type": "audio", "bit_rate": "128000", "duration": "3"}]),
        _probe_json([{"codec_type": "video", "bit_rate": "1000"}]),
        _probe_json([{"codec_type": "video", "duration": "10"}]),
    ],
)
def test_unusable_probe_output_raises(text: str) -> None:
    with pytest.raises(ProbeError):
        parse_probe_output(text)


def test_encode_args_copy_audio_and_set_video_bitrate() -> None:
    tool = FFmpegTool(ffmpeg="ffmpeg", ffprobe="ffprobe")

    assert tool.encode_args("/usr/bin/ffmpeg", "in.mp4", 1_817_535, "libx264", "out.mp4") == [
        "/usr/bin/ffmpeg", "-hide_banner", "-y", "-i", "in.mp4",
        "-c:a", "copy", "-b:v", "1817535", "-c:v", "libx264", "out.mp4",
    ]
    assert "-c:v" not in tool.encode_args("ffmpeg", "in.mp4", 500_000, None, "out.mp4")


@pytest.mark.asyncio
async def test_missing_binaries_raise_typed_errors(tmp_path) -> None:
    tool = FFmpegTool(ffmpeg="reelfit-no-such-ffmpeg", ffprobe="reelfit-no-such-ffprobe")

    with pytest.raises(ProbeError):
        await tool.probe(str(tmp_path / "in.mp4"))
    with pytest.raises(EncodeError):
        await tool.encode(str(tmp_path / "in.mp4"), 500_000, None, str(tmp_path / "out.mp4"))


def test_image_size_from_picture_stream() -> None:
    assert parse_image_size(_probe_json([{"codec_type": "video", "codec_name": "mjpeg", "width": 1080, "height": 1350}])) == (1080, 1350)

    with pytest.raises(ProbeError):
        parse_image_size(_probe_json([{"codec_type": "video", "width": 0, "height": 10}]))


def test_single_picture_slideshow_is_just_letterboxed() -> None:
    graph, label = slideshow_filter(1, 720, 1280)

    assert label == "s0"
    assert graph.startswith("[0:v]scale=720:1280:force_original_aspect_ratio=decrease,pad=720:1280:")
    assert "xfade" not in graph


def test_slideshow_transitions_wrap_back_to_first_picture() -> None:
    graph, label = slideshow_filter(3, 720, 1280)
    parts = graph.split(";")

    assert label == "m2"
    assert parts[0].endswith(",split[s0][back]")
    assert parts[3:] == [
        "[s0][s1]xfade=transition=slideleft:duration=0.5:offset=2.5[m0]",
        "[m0][s2]xfade=transition=slideleft:duration=0.5:offset=5.5[m1]",
        "[m1][back]xfade=transition=slideleft:duration=0.5:offset=8.5[m2]",
    ]
    assert slideshow_frames(3) == 540


def test_slideshow_args_map_filter_output_and_loop_under_audio() -> None:
    tool = FFmpegTool(ffmpeg="ffmpeg", ffprobe="ffprobe")

    loop = tool.slideshow_loop_args("ffmpeg", ["a.jpg", "b.jpg"], 720, 1280, None, "loop.mp4")
    mux = tool.slideshow_mux_args("ffmpeg", "loop.mp4", "audio.mp3", "out.mp4")

    assert loop.count("-loop") == 2
    assert loop[loop.index("-map") + 1] == "[m1]"
    assert loop[loop.index("-c:v") + 1] == "libx264"
    assert loop[loop.index("-frames:v") + 1] == "360"
    assert mux[mux.index("-stream_loop") + 1] == "-1"
    assert "-shortest" in mux
    assert mux[-1] == "out.mp4"


@pytest.mark.asyncio
async def test_missing_ffmpeg_fails_slideshow_render(tmp_path) -> None:
    tool = FFmpegTool(ffmpeg="reelfit-no-such-ffmpeg", ffprobe="reelfit-no-such-ffprobe")

    with pytest.raises(EncodeError):
        await tool.render_slideshow([str(tmp_path / "a.jpg")], str(tmp_path / "a.mp3"), 720, 1280, None, str(tmp_path / "out.mp4"))
    with pytest.raises(ProbeError):
        await tool.image_size(str(tmp_path / "a.jpg"))
