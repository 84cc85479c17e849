"""Tests for the request gate and the session data model."""

import pytest

from ..session import (
    QUALITY_PRESETS,
    ConnectionInfo,
    EnvCredentialProvider,
    InvalidQualityProfile,
    NotAuthenticated,
    QualityProfile,
    SessionRequestGate,
    StaticCredentialProvider,
    StatsSample,
    TitleSelection,
    resolve_quality,
)


@pytest.mark.parametrize("token", [None, "", "   "])
def test_gate_refuses_without_credential(token):
    gate = SessionRequestGate(StaticCredentialProvider(token))
    with pytest.raises(NotAuthenticated):
        gate.build("Portal 2", "auto")


def test_gate_builds_request():
    gate = SessionRequestGate(StaticCredentialProvider("tok"), preferred_server="eu-west")
    prepared = gate.build(TitleSelection("620", "Portal 2", store_type="STEAM"), "high")
    assert prepared.credential == "tok"
    assert prepared.request.title.name == "Portal 2"
    assert prepared.request.quality is QUALITY_PRESETS["high"]
    assert prepared.request.preferred_server == "eu-west"


def test_gate_rejects_empty_title_and_bad_quality():
    gate = SessionRequestGate(StaticCredentialProvider("tok"))
    with pytest.raises(ValueError):
        gate.build("  ", "auto")
    with pytest.raises(InvalidQualityProfile):
        gate.build("Portal 2", "8k-ultra")


def test_env_credential_provider_reads_each_call():
    env = {}
    provider = EnvCredentialProvider(environ=env)
    assert provider.get_credential() is None
    env["CLOUDPLAY_TOKEN"] = "abc"
    assert provider.get_credential() == "abc"


def test_resolve_quality():
    assert resolve_quality(None).name == "auto"
    assert resolve_quality(" ULTRA ").resolution == "3840x2160"
    custom = QualityProfile("custom", "1280x800", 90, codec="av1")
    assert resolve_quality(custom) is custom


def test_presets_are_consistent():
    for name, profile in QUALITY_PRESETS.items():
        assert profile.name == name
        assert profile.width > 0 and profile.height > 0
    assert QUALITY_PRESETS["competitive"].low_latency
    assert not QUALITY_PRESETS["high"].low_latency
    assert QUALITY_PRESETS["auto"].max_bitrate_kbps == 200_000


@pytest.mark.parametrize(
    "kwargs",
    [
        {"codec": "vp9"},
        {"fps": 0},
        {"max_bitrate_mbps": 0},
        {"resolution": "wide"},
        {"resolution": "0x1080"},
    ],
)
def test_quality_profile_validation(kwargs):
    with pytest.raises(InvalidQualityProfile):
        QualityProfile("bad", **kwargs)


def test_with_codec_returns_copy():
    base = QUALITY_PRESETS["high"]
    hevc = base.with_codec("h265")
    assert hevc.codec == "h265"
    assert base.codec == "h264"


@pytest.mark.parametrize("port,expected", [(0, 443), (322, 443), (48322, 443), (49005, 49005)])
def test_connection_info_normalizes_stream_port(port, expected):
    info = ConnectionInfo.normalized(control_ip="1.2.3.4", stream_port=port)
    assert info.stream_port == expected
    assert info.host == "1.2.3.4"
    assert info.resource_path == "/nvst/"


def test_stats_sample_from_dict():
    sample = StatsSample.from_dict({"fps": "59.9", "latency_ms": 30, "bitrate_kbps": 20000.0, "jitter_ms": 2})
    assert sample.fps == pytest.approx(59.9)
    assert sample.bitrate_kbps == 20000
    assert sample.jitter_ms == 2.0
    assert sample.round_trip_ms is None
    assert sample.resolution == ""
