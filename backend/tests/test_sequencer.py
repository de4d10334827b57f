import pytest

from arena.models import Pattern, PatternSquare
from arena.services.combat.errors import MalformedInput, Unauthorized


def _tick(scheduler, clock, t):
    clock.now = t
    scheduler.run_due()


def _active(store):
    return sorted((s['row'], s['col'], s['phase']) for s in store.snapshot()['activeSquares'])


@pytest.fixture()
def table(store):
    """A 5x5 grid with the DM, one player on (0, 0) and one on (2, 2)."""
    store.create_session(5, 5, 'dm')
    store.add_player('corner', 'Corner')
    store.add_player('centre', 'Centre')
    store.set_speed('dm', 'corner', 4)
    store.move_player('corner', 0, 0)
    return store


def _hits(store):
    return store.get_player('corner').hits, store.get_player('centre').hits


def _changes(before, after):
    """Square phase changes and hits between two published snapshots."""
    old = {s['id']: s for s in before['activeSquares']}
    new = {s['id']: s for s in after['activeSquares']}
    events = set()
    for sid, square in new.items():
        if sid not in old or old[sid]['phase'] != square['phase']:
            events.add((square['phase'], square['row'], square['col']))
    for sid, square in old.items():
        if sid not in new:
            events.add(('cleared', square['row'], square['col']))
    for pid, player in after['players'].items():
        if player['hits'] > before['players'][pid]['hits']:
            events.add(('hit', pid))
    return events


def test_two_square_timeline(table, scheduler, sequencer, clock):
    baseline = table.snapshot()
    published = []
    table.subscribe(lambda snapshot: published.append((clock(), snapshot)))
    pattern = Pattern('Example', [
        PatternSquare(0, 0, timing=0, duration=3),
        PatternSquare(2, 2, timing=1, duration=2),
    ])
    sequencer.launch('dm', pattern)
    for t in (0, 0.5, 1, 2, 3, 3.99, 4):
        _tick(scheduler, clock, t)

    timeline = []
    previous = baseline
    for at, snapshot in published:
        events = _changes(previous, snapshot)
        if timeline and timeline[-1][0] == at:
            timeline[-1][1].update(events)
        else:
            timeline.append((at, events))
        previous = snapshot

    assert timeline == [
        (0, {('warning', 0, 0)}),
        (1, {('warning', 2, 2), ('damage', 0, 0), ('hit', 'corner')}),
        (2, {('damage', 2, 2), ('hit', 'corner'), ('hit', 'centre')}),
        (3, {('hit', 'corner'), ('hit', 'centre')}),
        (4, {('cleared', 0, 0), ('cleared', 2, 2)}),
    ]
    # A cell is promoted before anyone standing on it is hit
    flat = [_changes(a, b) for (_, a), (_, b) in zip([(0, baseline)] + published, published)]
    first_damage = next(i for i, events in enumerate(flat) if ('damage', 0, 0) in events)
    first_hit = next(i for i, events in enumerate(flat) if ('hit', 'corner') in events)
    assert first_damage < first_hit
    assert _hits(table) == (3, 2)
    assert sequencer.in_flight() == []
    assert scheduler.pending() == 0


def test_instance_id_survives_promotion(table, scheduler, sequencer, clock):
    [activation] = sequencer.launch('dm', Pattern('Dot', [PatternSquare(1, 1)]))
    _tick(scheduler, clock, 0)
    [warning] = table.snapshot()['activeSquares']
    _tick(scheduler, clock, 1)
    [damage] = table.snapshot()['activeSquares']
    assert warning['id'] == damage['id'] == activation.id
    assert (warning['phase'], damage['phase']) == ('warning', 'damage')


def test_every_step_publishes_once(table, scheduler, sequencer, clock, snapshots):
    sequencer.launch('dm', Pattern('Dot', [PatternSquare(1, 1, duration=2)]))
    before = len(snapshots)
    for t in range(5):
        _tick(scheduler, clock, t)
    # warning, damage, two sweeps, clear
    assert len(snapshots) - before == 5


@pytest.mark.parametrize('duration,expected_hits,cleared_at', [
    (3, 3, 4),
    (2.5, 2, 3.5),
    (1, 1, 2),
    (0.5, 0, 1.5),
    (0, 0, 1),
])
def test_stationary_player_takes_floor_duration_hits(table, scheduler, sequencer, clock,
                                                     duration, expected_hits, cleared_at):
    sequencer.launch('dm', Pattern('Dot', [PatternSquare(2, 2, duration=duration)]))
    t = 0.0
    while t < cleared_at:
        _tick(scheduler, clock, t)
        assert _active(table)
        t += 0.25
    _tick(scheduler, clock, cleared_at)
    assert _active(table) == []
    assert table.get_player('centre').hits == expected_hits


def test_hits_are_point_in_time_sweeps(table, scheduler, sequencer, clock):
    sequencer.launch('dm', Pattern('Dot', [PatternSquare(2, 3, duration=3)]))
    _tick(scheduler, clock, 1)
    assert table.get_player('centre').hits == 0
    # Stepping in between sweeps is not retroactive
    _tick(scheduler, clock, 1.5)
    table.move_player('centre', 2, 3)
    assert table.get_player('centre').hits == 0
    _tick(scheduler, clock, 2)
    assert table.get_player('centre').hits == 1
    # Leaving before the next sweep avoids it
    table.move_player('centre', 2, 2)
    _tick(scheduler, clock, 3)
    assert table.get_player('centre').hits == 1


def test_disconnected_player_is_not_hit(table, scheduler, sequencer, clock):
    sequencer.launch('dm', Pattern('Dot', [PatternSquare(2, 2, duration=3)]))
    _tick(scheduler, clock, 1)
    table.remove_player('centre')
    _tick(scheduler, clock, 4)
    assert table.get_player('centre') is None
    assert _active(table) == []


def test_overlapping_launches_stack_independently(table, scheduler, sequencer, clock):
    dot = Pattern('Dot', [PatternSquare(2, 2, duration=1)])
    first = sequencer.launch('dm', dot)
    second = sequencer.launch('dm', dot)
    assert first[0].id != second[0].id
    _tick(scheduler, clock, 1)
    assert _active(table) == [(2, 2, 'damage'), (2, 2, 'damage')]
    assert table.get_player('centre').hits == 2
    _tick(scheduler, clock, 2)
    assert _active(table) == []


def test_squares_sharing_a_timing_keep_separate_timelines(table, scheduler, sequencer, clock):
    sequencer.launch('dm', Pattern('Pair', [
        PatternSquare(0, 0, timing=0, duration=1),
        PatternSquare(2, 2, timing=0, duration=3),
    ]))
    _tick(scheduler, clock, 2)
    assert _active(table) == [(2, 2, 'damage')]
    _tick(scheduler, clock, 4)
    assert _active(table) == []


def test_deleting_pattern_leaves_launch_in_flight(table, scheduler, sequencer, clock):
    table.save_pattern('dm', Pattern('Dot', [PatternSquare(2, 2, timing=1, duration=2)]))
    sequencer.launch('dm', table.saved_pattern(0))
    table.delete_pattern('dm', 0)
    assert table.snapshot()['savedPatterns'] == []
    _tick(scheduler, clock, 1)
    assert _active(table) == [(2, 2, 'warning')]
    _tick(scheduler, clock, 3)
    assert table.get_player('centre').hits == 2
    _tick(scheduler, clock, 4)
    assert _active(table) == []


def test_launch_requires_dm(table, scheduler, sequencer):
    with pytest.raises(Unauthorized):
        sequencer.launch('centre', Pattern('Dot', [PatternSquare(2, 2)]))
    assert scheduler.pending() == 0
    assert sequencer.in_flight() == []


def test_launch_is_relative_to_the_clock(table, scheduler, sequencer, clock):
    clock.now = 100
    [activation] = sequencer.launch('dm', Pattern('Dot', [PatternSquare(2, 2, timing=2, duration=3)]))
    assert (activation.warning_at, activation.damage_at, activation.clear_at) == (102, 103, 106)
    _tick(scheduler, clock, 101.9)
    assert _active(table) == []


def test_parse_defaults_missing_or_junk_timings(sequencer):
    pattern = sequencer.parse({'name': 'Mixed', 'squares': [
        {'row': 1, 'col': 2},
        {'row': 3, 'col': 4, 'timing': 'soon', 'duration': 'long'},
        {'row': 5, 'col': 6, 'timing': '1.5', 'duration': 2},
        {'row': 7, 'col': 8, 'timing': -4, 'duration': None},
    ]})
    assert [(s.timing, s.duration) for s in pattern.squares] == [
        (0, 3), (0, 3), (1.5, 2), (0, 3),
    ]
    assert pattern.timings() == [0, 1.5]


@pytest.mark.parametrize('payload', [
    None,
    'Cone',
    {'name': 'No squares'},
    {'name': 'Bad', 'squares': 'all of them'},
    {'name': 'Bad', 'squares': [{'row': 'x', 'col': 1}]},
    {'name': 'Bad', 'squares': [{'row': 1.5, 'col': 1}]},
    {'name': 'Bad', 'squares': [[1, 1]]},
])
def test_parse_rejects_malformed_patterns(sequencer, payload):
    with pytest.raises(MalformedInput):
        sequencer.parse(payload)
