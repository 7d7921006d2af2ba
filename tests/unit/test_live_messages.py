# pylint: disable=missing-module-docstring,missing-function-docstring

import json

import pytest

from protocol.live_messages import (
    FragmentSignal,
    InterruptSignal,
    LiveProtocolError,
    build_realtime_input,
    build_setup_message,
    parse_server_message,
)


def test_setup_message_carries_persona_and_voice():
    msg = build_setup_message(
        model="models/test-model",
        system_instruction="You are a helpful narrator",
        voice_id="Kore",
    )
    setup = msg["setup"]
    assert setup["model"] == "models/test-model"
    assert setup["generationConfig"]["responseModalities"] == ["AUDIO"]
    voice = setup["generationConfig"]["speechConfig"]["voiceConfig"]["prebuiltVoiceConfig"]
    assert voice == {"voiceName": "Kore"}
    assert setup["systemInstruction"]["parts"][0]["text"] == "You are a helpful narrator"
    json.dumps(msg)


def test_realtime_input_is_tagged_with_pcm_rate():
    msg = build_realtime_input("AAAA")
    assert msg == {
        "realtimeInput": {"audio": {"mimeType": "audio/pcm;rate=16000", "data": "AAAA"}}
    }


def test_parse_setup_complete():
    msg = parse_server_message('{"setupComplete": {}}')
    assert msg.setup_complete
    assert list(msg.signals()) == []


def test_parse_audio_fragments_in_order():
    raw = json.dumps({
        "serverContent": {
            "modelTurn": {
                "parts": [
                    {"inlineData": {"mimeType": "audio/pcm;rate=24000", "data": "AAAA"}},
                    {"text": "ignored"},
                    {"inlineData": {"data": "BBBB"}},
                ]
            }
        }
    }).encode("utf-8")
    msg = parse_server_message(raw)
    assert [f.encoded for f in msg.fragments] == ["AAAA", "BBBB"]
    assert msg.fragments[0].mime_type == "audio/pcm;rate=24000"
    assert not msg.interrupted


def test_interruption_is_yielded_before_audio_of_same_message():
    raw = json.dumps({
        "serverContent": {
            "interrupted": True,
            "modelTurn": {"parts": [{"inlineData": {"data": "AAAA"}}]},
        }
    })
    signals = list(parse_server_message(raw).signals())
    assert isinstance(signals[0], InterruptSignal)
    assert signals[1] == FragmentSignal(encoded="AAAA", mime_type=None)


def test_turn_complete_and_go_away():
    msg = parse_server_message('{"serverContent": {"turnComplete": true}, "goAway": {"timeLeft": "12.5s"}}')
    assert msg.turn_complete
    assert msg.go_away_s == pytest.approx(12.5)


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", b"\xff\xfe"])
def test_malformed_frames_raise(raw):
    with pytest.raises(LiveProtocolError):
        parse_server_message(raw)


@pytest.mark.parametrize("raw", [
    '{"serverContent": "oops"}',
    '{"serverContent": {"modelTurn": []}}',
    '{"serverContent": {"modelTurn": {"parts": {"inlineData": {}}}}}',
    '{"serverContent": {"modelTurn": {"parts": ["AAAA"]}}}',
    '{"serverContent": {"modelTurn": {"parts": [{"inlineData": "AAAA"}]}}}',
    '{"goAway": "5s"}',
])
def test_wrongly_shaped_fields_raise(raw):
    with pytest.raises(LiveProtocolError):
        parse_server_message(raw)


def test_null_fields_are_treated_as_absent():
    msg = parse_server_message('{"serverContent": null, "goAway": null}')
    assert msg.fragments == ()
    assert not msg.interrupted
    assert msg.go_away_s is None
