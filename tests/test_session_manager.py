# tests/test_session_manager.py
import pytest

from hrvxo.hrv.processor import HrvMetrics
from hrvxo.session.manager import MIN_RECORDING_SEC, SETTLE_IN_MS, SessionManager
from hrvxo.session.state import SessionPhase, Track

P = SessionPhase


@pytest.fixture
def sm():
    s = SessionManager()
    s.start_session()
    return s

def _accumulator_matches_phase(s: SessionManager):
    return (s.current_song is not None) == (s.phase in (P.ACTIVE_SETTLING, P.ACTIVE_RECORDING))


def test_full_song_scenario(sm, metrics):
    sm.select_song(Track(track_id="v1", title="A", artist="B"), now_ms=0)
    assert sm.phase is P.ACTIVE_WAITING_PLAYBACK
    assert sm.current_song is None

    sm.on_playback_detected("A", "B", 0)
    assert sm.phase is P.ACTIVE_SETTLING
    assert sm.settle_countdown_sec == 15
    assert sm.current_song.track.track_id == "v1"
    assert sm.pending_song is None

    sm.record_metrics(metrics, 15_000)
    assert sm.phase is P.ACTIVE_RECORDING
    assert sm.recording_duration_sec == 0
    assert sm.current_song.reading_count == 0

    sm.record_metrics(metrics, 75_000)
    assert sm.recording_duration_sec == 60

    sm.on_playback_stopped(75_000)
    assert sm.phase is P.ACTIVE_NO_SONG
    assert sm.current_song is None
    assert len(sm.results) == 1
    r = sm.results[0]
    assert r.duration_listened_sec == 60
    assert r.is_valid is True
    assert r.track.title == "A"
    assert r.avg_coherence == pytest.approx(0.6)
    assert r.avg_rmssd == pytest.approx(42.0)
    assert r.mean_hr == pytest.approx(65.0)
    assert r.movement_detected is False

def test_settle_countdown_and_gating(sm, metrics):
    sm.on_playback_detected("A", "", 1_000)
    for t, left in [(1_000, 15), (4_500, 11), (10_999, 5), (15_999, 0)]:
        sm.record_metrics(metrics, t)
        assert sm.settle_countdown_sec == left
        assert sm.phase is P.ACTIVE_SETTLING
        assert sm.current_song.reading_count == 0
    # the tick that crosses the settle boundary is not recorded
    sm.record_metrics(metrics, 16_000)
    assert sm.phase is P.ACTIVE_RECORDING
    assert sm.current_song.reading_count == 0
    sm.record_metrics(metrics, 17_000)
    assert sm.current_song.reading_count == 1
    assert sm.recording_duration_sec == 1

def test_readings_are_averaged(sm):
    sm.on_playback_detected("A", "B", 0)
    sm.record_metrics(HrvMetrics(0.2, 30.0, 60.0), SETTLE_IN_MS)
    for i, c in enumerate([0.2, 0.4, 0.9]):
        sm.record_metrics(HrvMetrics(c, 30.0 + 10 * i, 60.0 + i), SETTLE_IN_MS + 1_000 * (i + 1))
    sm.end_session(SETTLE_IN_MS + 3_000)
    r = sm.results[0]
    assert r.avg_coherence == pytest.approx(0.5)
    assert r.avg_rmssd == pytest.approx(40.0)
    assert r.mean_hr == pytest.approx(61.0)
    assert r.duration_listened_sec == 3
    assert r.is_valid is False

def test_rapid_detections_discard_unmeasured_song(sm, metrics):
    sm.on_playback_detected("First", "X", 0)
    sm.record_metrics(metrics, 3_000)
    sm.on_playback_detected("Second", "Y", 5_000)
    assert sm.results == ()
    assert sm.current_song.track.title == "Second"

    sm.record_metrics(metrics, 20_000)
    sm.record_metrics(metrics, 85_000)
    sm.on_playback_stopped(85_000)
    assert len(sm.results) == 1
    assert sm.results[0].track.title == "Second"
    assert sm.results[0].is_valid

def test_song_without_readings_but_with_duration_is_kept(sm):
    sm.on_playback_detected("A", "B", 0)
    sm.on_playback_stopped(40_000)
    assert len(sm.results) == 1
    r = sm.results[0]
    assert r.duration_listened_sec == 25
    assert r.avg_coherence == 0.0
    assert r.is_valid is False

def test_is_valid_threshold(sm, metrics):
    for dur, valid in [(MIN_RECORDING_SEC - 1, False), (MIN_RECORDING_SEC, True)]:
        t0 = 1_000_000 * (dur + 1)
        sm.on_playback_detected("S", "", t0)
        sm.record_metrics(metrics, t0 + SETTLE_IN_MS)
        sm.record_metrics(metrics, t0 + SETTLE_IN_MS + 500)
        sm.on_playback_stopped(t0 + SETTLE_IN_MS + dur * 1_000 + 999)
        assert sm.results[-1].duration_listened_sec == dur
        assert sm.results[-1].is_valid is valid

def test_song_change_finalizes_previous_and_ignores_pending(sm, metrics):
    sm.on_playback_detected("A", "B", 0)
    sm.record_metrics(metrics, 15_000)
    sm.record_metrics(metrics, 80_000)
    sm.select_song(Track("v9", "Next", "Z"), now_ms=80_000)
    assert sm.phase is P.ACTIVE_WAITING_PLAYBACK
    assert len(sm.results) == 1

    sm.on_playback_detected("Next", "Z", 81_000)
    sm.on_song_changed("Other", "Q", 90_000)
    assert sm.current_song.track == Track("", "Other", "Q")
    assert sm.phase is P.ACTIVE_SETTLING
    assert sm.settle_countdown_sec == 15
    # Next was never measured and is dropped
    assert [r.track.title for r in sm.results] == ["A"]

def test_song_changed_keeps_pending_selection(sm):
    sm.select_song(Track("v1", "Picked", "P"))
    sm.on_song_changed("Radio", "R", 1_000)
    assert sm.pending_song == Track("v1", "Picked", "P")
    sm.on_playback_detected("Picked", "P", 2_000)
    assert sm.current_song.track.track_id == "v1"

def test_song_changed_uses_resolved_track(sm):
    sm.on_song_changed("a", "b", 0, resolved=Track("v2", "A", "B", album="LP"))
    assert sm.current_song.track.track_id == "v2"

def test_detected_track_without_selection_has_no_id(sm):
    sm.on_playback_detected("Live", "", 0)
    assert sm.current_song.track == Track("", "Live", "")

def test_movement_is_sticky_per_song(sm, metrics):
    sm.on_playback_detected("A", "B", 0)
    sm.report_movement()
    assert sm.current_song.movement_detected is True
    sm.record_metrics(metrics, 15_000)
    assert sm.current_song.movement_detected is True
    for t in range(16_000, 80_000, 1_000):
        sm.record_metrics(metrics, t)
    assert sm.phase is P.ACTIVE_RECORDING
    sm.on_playback_stopped(80_000)
    assert sm.results[0].movement_detected is True

    sm.on_playback_detected("C", "D", 100_000)
    sm.on_playback_stopped(200_000)
    assert sm.results[1].movement_detected is False

def test_end_session_keeps_results_and_clears_songs(sm, metrics):
    sm.select_song(Track("v1", "A", "B"))
    sm.on_playback_detected("A", "B", 0)
    sm.record_metrics(metrics, 15_000)
    sm.record_metrics(metrics, 90_000)
    sm.select_song(Track("v2", "C", "D"), now_ms=90_000)
    sm.end_session(95_000)
    assert sm.phase is P.ENDED
    assert sm.current_song is None
    assert sm.pending_song is None
    assert len(sm.results) == 1

    # terminal until reset or a new session
    sm.on_playback_detected("X", "Y", 100_000)
    sm.record_metrics(metrics, 200_000)
    sm.on_playback_stopped(200_000)
    sm.select_song(Track("v3", "E", "F"))
    assert sm.phase is P.ENDED
    assert len(sm.results) == 1

def test_start_session_clears_previous_results(sm):
    sm.on_playback_detected("A", "B", 0)
    sm.end_session(100_000)
    assert len(sm.results) == 1
    sm.start_session()
    assert sm.phase is P.ACTIVE_NO_SONG
    assert sm.results == ()

def test_reset_returns_to_not_started(sm, metrics):
    sm.select_song(Track("v1", "A", "B"))
    sm.on_playback_detected("A", "B", 0)
    sm.on_playback_stopped(100_000)
    sm.reset()
    assert sm.phase is P.NOT_STARTED
    assert sm.results == ()
    assert sm.current_song is None
    assert sm.pending_song is None
    assert sm.settle_countdown_sec == 0
    assert sm.recording_duration_sec == 0

def test_invalid_transitions_are_noops(metrics):
    s = SessionManager()
    s.on_playback_stopped(0)
    s.on_playback_detected("A", "B", 0)
    s.on_song_changed("A", "B", 0)
    s.record_metrics(metrics, 0)
    s.report_movement()
    s.select_song(Track("v", "A", "B"))
    s.end_session(0)
    assert s.phase is P.NOT_STARTED
    assert s.current_song is None and s.pending_song is None
    assert s.results == ()

    s.start_session()
    s.on_playback_stopped(1_000)
    s.record_metrics(metrics, 1_000)
    assert s.phase is P.ACTIVE_NO_SONG
    assert s.results == ()

def test_start_session_while_active_is_ignored(sm):
    sm.on_playback_detected("A", "B", 0)
    sm.start_session()
    assert sm.phase is P.ACTIVE_SETTLING

def test_accumulator_exists_only_while_measuring(sm, metrics):
    steps = [
        lambda: sm.select_song(Track("v1", "A", "B"), now_ms=0),
        lambda: sm.on_playback_detected("A", "B", 0),
        lambda: sm.record_metrics(metrics, 15_000),
        lambda: sm.select_song(Track("v2", "C", "D"), now_ms=20_000),
        lambda: sm.on_playback_detected("C", "D", 21_000),
        lambda: sm.on_song_changed("E", "F", 22_000),
        lambda: sm.on_playback_stopped(30_000),
        lambda: sm.on_playback_detected("G", "H", 31_000),
        lambda: sm.end_session(32_000),
    ]
    assert _accumulator_matches_phase(sm)
    for step in steps:
        step()
        assert _accumulator_matches_phase(sm)

def test_results_are_immutable_snapshots(sm, metrics):
    sm.on_playback_detected("A", "B", 0)
    song = sm.current_song
    song.coherence_readings.append(99.0)
    assert sm.current_song.reading_count == 0
    sm.on_playback_stopped(100_000)
    with pytest.raises(AttributeError):
        sm.results[0].is_valid = False
