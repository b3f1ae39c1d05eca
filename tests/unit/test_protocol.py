"""Wire codec and frame classification tests."""

import random
from datetime import datetime, timezone

import pytest

from treadctrl.protocol import (
    Hibernated,
    Idling,
    Running,
    RunningTelemetry,
    SetSpeed,
    Start,
    Starting,
    Stop,
    Stopping,
    decode_command,
    encode_command,
    frame_to_hex,
    parse_frame,
    round_tenths,
)
from treadctrl.simulator import build_status_frame

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_constant_frames():
    assert frame_to_hex(encode_command(Start())) == "FB07A201010500B0FC"
    assert frame_to_hex(encode_command(Stop())) == "FB07A204010000AEFC"


@pytest.mark.parametrize(
    "speed, expected",
    [
        (1.0, "FB07A102010A00B5FC"),
        (3.5, "FB07A102012300CEFC"),
        (6.0, "FB07A102013C00E7FC"),
    ],
)
def test_set_speed_frame(speed, expected):
    assert frame_to_hex(SetSpeed(speed).to_bytes()) == expected


def test_set_speed_clamps_out_of_range():
    assert SetSpeed(0.0).speed_tenths == 10
    assert SetSpeed(-3.0).speed_tenths == 10
    assert SetSpeed(9.9).speed_tenths == 60


def test_set_speed_non_finite_encodes_within_range():
    assert SetSpeed(float("nan")).speed_tenths == 10
    assert SetSpeed(float("inf")).speed_tenths == 60
    assert SetSpeed(float("-inf")).speed_tenths == 10
    assert decode_command(SetSpeed(float("nan")).to_bytes()) == SetSpeed(1.0)


def test_set_speed_rounds_to_tenths():
    assert SetSpeed(2.34).speed_tenths == 23
    assert SetSpeed(2.35).speed_tenths == 24
    assert SetSpeed(2.96).speed_tenths == 30


def test_checksum_for_every_speed_step():
    for tenths in range(10, 61):
        speed = tenths / 10
        frame = SetSpeed(speed).to_bytes()
        assert len(frame) == 9
        assert frame[5] == tenths
        assert frame[7] == (171 + tenths) % 256


def test_rounding_is_idempotent():
    for tenths in range(10, 61):
        v = tenths / 10 + 0.03
        once = round_tenths(v)
        assert round_tenths(once) == once


def test_decode_command():
    assert decode_command(Start().to_bytes()) == Start()
    assert decode_command(Stop().to_bytes()) == Stop()
    assert decode_command(SetSpeed(4.2).to_bytes()) == SetSpeed(4.2)


def test_decode_command_rejects_bad_frames():
    frame = bytearray(SetSpeed(4.2).to_bytes())
    frame[7] ^= 0x01
    assert decode_command(bytes(frame)) is None
    assert decode_command(b"") is None
    assert decode_command(bytes(9)) is None


def test_parse_frame_never_raises():
    rng = random.Random(1234)
    for length in range(0, 65):
        for _ in range(20):
            frame = [rng.randrange(256) for _ in range(length)]
            state = parse_frame(frame, now=NOW)
            if length < 18:
                if length > 1 and frame[1] == 4:
                    assert isinstance(state, Hibernated)
                else:
                    assert state == Idling()


def test_short_frames():
    assert parse_frame([]) == Idling()
    assert parse_frame([0xF8]) == Idling()
    assert parse_frame([0xF8, 4, 0, 0]) == Hibernated()
    assert parse_frame([0xF8, 0xA2, 2, 2]) == Idling()


def test_mode_dispatch():
    assert parse_frame(build_status_frame(1)) == Starting()
    assert isinstance(parse_frame(build_status_frame(2, 3.0, 0.5)), Running)
    assert isinstance(parse_frame(build_status_frame(4, 0.0, 0.5)), Stopping)
    assert isinstance(parse_frame(build_status_frame(5, 0.0, 0.5)), Stopping)
    assert parse_frame(build_status_frame(3)) == Idling()
    assert parse_frame(build_status_frame(0)) == Idling()


def test_running_telemetry():
    frame = [0] * 18
    frame[3] = 2
    frame[5] = 35
    frame[11] = 1
    frame[12] = 44
    state = parse_frame(frame, stride_length_m=0.7, now=NOW)

    assert isinstance(state, Running)
    telemetry = state.telemetry
    assert telemetry.speed == pytest.approx(3.5)
    # 0.44 + 0.01 * 256
    assert telemetry.distance == pytest.approx(3.0)
    assert telemetry.steps == 4285


def test_steps_use_stride_length():
    frame = build_status_frame(2, 3.0, 1.0)
    assert parse_frame(frame, stride_length_m=0.5).telemetry.steps == 2000
    assert parse_frame(frame, stride_length_m=1.0).telemetry.steps == 1000


def test_telemetry_equality_is_structural():
    a = RunningTelemetry.create(3.0, 1.0, timestamp=NOW)
    b = RunningTelemetry.create(3.0, 1.0, timestamp=NOW)
    assert Running(a) == Running(b)
    assert Running(a) != Stopping(a)
