from __future__ import annotations
import pytest
from bmschart.analyze import (
    GRAMMARS, ChannelGrammar, MetadataGrammar, load_chart, parse_chart, parse_lines, read_title, slots,
)
from bmschart.chart import AutoplayKeysound, BackgroundAnimation, LongNoteEnd, Note
from bmschart.errors import BuilderConsumedError, ChartLoadError
from bmschart.chart import ChartBuilder
from bmschart.util.keys import decode_key


def test_metadata_and_paths(cfg):
    chart = parse_chart(
        "\n".join([
            "#TITLE   Evans ",
            "#ARTIST someone",
            "#GENRE TRANCE",
            "#PLAYLEVEL 7",
            "#WAV01 kick.wav",
            "#WAVzz  a b.ogg",
            "#BMP0A bg.bmp",
        ]),
        cfg,
    )
    assert chart.title == "Evans"
    assert chart.artist == "someone"
    assert chart.metadata["GENRE"] == "TRANCE"
    assert chart.metadata["PLAYLEVEL"] == "7"
    assert chart.keysounds[1] == "kick.wav"
    assert chart.keysounds[1295] == "a b.ogg"
    assert chart.bga_layers[10] == "bg.bmp"
    assert chart.keysound_path(2) is None


def test_missing_title_and_artist(cfg):
    chart = parse_chart("#00111:01", cfg)
    assert chart.title == "MISSING TITLE"
    assert chart.artist == "MISSING ARTIST"


def test_missing_title_from_config(cfg):
    cfg = dict(cfg, missing_title="?", missing_artist="??")
    chart = parse_chart("", cfg)
    assert (chart.title, chart.artist) == ("?", "??")


def test_tags_are_case_sensitive(cfg):
    chart = parse_chart("#title lower\n#wav01 x.wav", cfg)
    assert chart.title == "MISSING TITLE"
    assert not chart.keysounds


def test_slot_positions(cfg):
    chart = parse_chart("#BPM 120\n#00211:0A0B0C0D", cfg)
    assert [o.measure for o in chart.objects] == [2.0, 2.25, 2.5, 2.75]
    assert [o.payload for o in chart.objects] == [Note(10), Note(11), Note(12), Note(13)]
    assert [o.time for o in chart.objects] == [4000, 4500, 5000, 5500]
    assert all(o.channel == 11 for o in chart.objects)


def test_placeholder_slots_yield_nothing(cfg):
    chart = parse_chart("#00111:01020003", cfg)
    assert [o.measure for o in chart.objects] == [1.0, 1.25, 1.75]


def test_channel_payload_types(cfg):
    chart = parse_chart("#00101:01\n#00104:02\n#00107:03\n#00126:04", cfg)
    kinds = {o.channel: o.payload for o in chart.objects}
    assert kinds == {
        1: AutoplayKeysound(1),
        4: BackgroundAnimation(2),
        7: BackgroundAnimation(3),
        26: Note(4),
    }


def test_objects_are_time_sorted(cfg):
    chart = parse_chart("#00311:01\n#00111:0002\n#00001:03", cfg)
    assert [o.measure for o in chart.objects] == [0.0, 1.5, 3.0]
    times = [o.time for o in chart.objects]
    assert times == sorted(times)
    assert all(o.resolved for o in chart.objects)


def test_unrecognized_lines_are_ignored(cfg):
    chart = parse_chart(
        "\n".join([
            "*---------------------- HEADER FIELD",
            "#RANDOM 2",
            "#00117:01",      # unsupported channel
            "#00111:010",     # odd payload
            "#0011:01",       # short measure
            "plain text",
            "",
        ]),
        cfg,
    )
    assert chart.objects == ()
    assert not chart.metadata
    assert len(chart.timeline) == 1


def test_base_bpm_and_named_bpm(cfg):
    chart = parse_chart("#BPM 150\n#BPM01 200\n#BPMzz 75.5\n#00108:01\n#00308:ZZ", cfg)
    tl = chart.timeline
    assert [(e.measure, e.bpm) for e in tl] == [(0.0, 150.0), (1.0, 200.0), (3.0, 75.5)]


def test_bpm_00_sets_base_tempo(cfg):
    chart = parse_chart("#BPM00 90", cfg)
    assert chart.timeline[0].bpm == 90.0


def test_default_bpm_from_config(cfg):
    assert parse_chart("", cfg).timeline[0].bpm == 130.0
    assert parse_chart("", dict(cfg, default_bpm=100)).timeline[0].bpm == 100.0


def test_hex_tempo_channel(cfg):
    chart = parse_chart("#BPM 120\n#00103:00F0\n#00203:00", cfg)
    assert [(e.measure, e.bpm) for e in chart.timeline] == [(0.0, 120.0), (1.5, 240.0)]


def test_undefined_references_are_dropped(cfg):
    chart = parse_chart("#BPM 120\n#00108:02\n#00109:05\n#00209:00", cfg)
    assert len(chart.timeline) == 1


def test_stop_channel(cfg):
    chart = parse_chart("#BPM 120\n#STOP01 192\n#00209:01\n#00311:01", cfg)
    tl = chart.timeline
    assert len(tl) == 3
    assert tl.time_from_measure(2) == 6000
    assert tl.measure_from_time(5000) == 2.0
    assert chart.objects[0].time == 8000


def test_length_override(cfg):
    chart = parse_chart("#BPM 120\n#00502:2.0\n#00511:0001\n#00611:01", cfg)
    assert [o.time for o in chart.objects] == [12000, 14000]


@pytest.mark.parametrize(
    "line, category",
    [
        ("#BPM fast", "BPM"),
        ("#BPM01 1.2.3", "BPM"),
        ("#BPM -10", "BPM"),
        ("#STOP01 long", "STOP"),
        ("#STOP01 -5", "STOP"),
        ("#00502:wide", "LENGTH"),
        ("#00502:0", "LENGTH"),
        ("#00103:ZZ", "BPM"),
        ("#00103:0G", "BPM"),
        ("#BPM 1_50", "BPM"),
        ("#BPM inf", "BPM"),
        ("#STOP01 nan", "STOP"),
        ("#00102:1_5", "LENGTH"),
    ],
)
def test_fatal_lines(cfg, line, category):
    with pytest.raises(ChartLoadError) as info:
        parse_chart(f"#TITLE x\n{line}", cfg)
    assert info.value.category == category
    assert info.value.line_no == 2
    assert category in str(info.value)


def test_length_capacity_from_config(cfg):
    with pytest.raises(ChartLoadError) as info:
        parse_chart("#01202:0.5", dict(cfg, max_measures=10))
    assert info.value.category == "LENGTH"


def test_long_notes_pair_across_lines(cfg):
    # tail line first; pairing follows score position, not line order
    chart = parse_chart("#BPM 120\n#00251:0001\n#00151:0100", cfg)
    assert [(o.measure, o.payload) for o in chart.objects] == [
        (1.0, Note(1)),
        (1.0, LongNoteEnd(2.5)),
    ]
    marker, release = chart.long_notes()[0]
    assert marker.time == 2000
    assert release == 5000
    assert [o.payload.measure for o in chart.objects_of("ln_end")] == [2.5]
    assert chart.duration_ms == 5000


def test_unpaired_long_note_head_stays_a_note(cfg):
    chart = parse_chart("#00151:01", cfg)
    assert [o.payload for o in chart.objects] == [Note(1)]
    assert chart.long_notes() == []


def test_grammar_priority_order():
    assert [type(g).__name__ for g in GRAMMARS] == [
        "MetadataGrammar", "WavGrammar", "BmpGrammar", "BpmGrammar", "StopGrammar", "ChannelGrammar",
    ]


def test_grammar_match_fields():
    assert MetadataGrammar().match("#SUBTITLE [HARD]") == {"header": "SUBTITLE", "value": "[HARD]"}
    assert MetadataGrammar().match("TITLE x") is None
    assert ChannelGrammar().match("#00111:01 ") == {"measure": 1, "channel": 11, "data": "01"}
    assert ChannelGrammar().match("#00199:01") is None
    assert ChannelGrammar().match("#00102:1.5") == {"measure": 1, "channel": 2, "data": "1.5"}


def test_slots():
    assert slots("0A0B0C") == ["0A", "0B", "0C"]
    assert slots("") == []


def test_keys_are_case_insensitive(cfg):
    chart = parse_chart("#WAVab hat.wav\n#00111:AB", cfg)
    assert chart.keysounds[decode_key("AB")] == "hat.wav"
    assert chart.objects[0].payload == Note(decode_key("ab"))


def test_parse_lines_accepts_any_iterable(cfg):
    chart = parse_lines(iter(["#TITLE gen", "#00111:01"]), cfg)
    assert chart.title == "gen"
    assert len(chart.objects) == 1


def test_same_input_same_chart(cfg):
    text = "#BPM 133\n#BPM01 266\n#STOP01 48\n#00108:0100\n#00209:01\n#00302:0.75\n#00411:0102"
    a, b = parse_chart(text, cfg), parse_chart(text, cfg)
    assert a.timeline == b.timeline
    assert a.objects == b.objects


def test_chart_is_hashable(cfg):
    chart = parse_chart("#TITLE x\n#00111:01", cfg)
    assert chart in {chart}
    assert chart != parse_chart("#TITLE x\n#00111:01", cfg)


def test_load_chart_replaces_invalid_utf8(cfg, tmp_path):
    path = tmp_path / "broken.bms"
    path.write_bytes(b"#TITLE caf\xff\r\n#ARTIST x\r\n#00111:01\r\n")
    chart = load_chart(path, cfg)
    assert chart.title == "caf\ufffd"
    assert chart.artist == "x"
    assert len(chart.objects) == 1


def test_read_title(cfg, chart_file):
    assert read_title(chart_file("#GENRE a\n#TITLE  Found it\n#00111:01"), cfg) == "Found it"
    assert read_title(chart_file("#GENRE a", name="untitled.bms"), cfg) is None


def test_chart_builder_consumed():
    builder = ChartBuilder()
    builder.build()
    with pytest.raises(BuilderConsumedError):
        builder.with_metadata("TITLE", "late")
    with pytest.raises(BuilderConsumedError):
        builder.build()
