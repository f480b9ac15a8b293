import asyncio

import pytest

from learning_map.errors import LayoutError
from learning_map.layout import LayoutEngine, LayoutOptions, LayoutOutcome, compute_layout
from learning_map.models import LayoutEdge, LayoutNode, Position


def tree():
    nodes = [
        LayoutNode(id='A1', width=350, height=300),
        LayoutNode(id='Q1', width=200, height=100),
        LayoutNode(id='Q2', width=200, height=100),
        LayoutNode(id='A2', width=350, height=250),
    ]
    edges = [
        LayoutEdge(id='A1-Q1', source='A1', target='Q1'),
        LayoutEdge(id='A1-Q2', source='A1', target='Q2'),
        LayoutEdge(id='Q1-A2', source='Q1', target='A2'),
    ]
    return nodes, edges


def overlaps(a: Position, a_size, b: Position, b_size) -> bool:
    return not (
        a.x + a_size[0] <= b.x
        or b.x + b_size[0] <= a.x
        or a.y + a_size[1] <= b.y
        or b.y + b_size[1] <= a.y
    )


def test_incomplete_until_every_node_is_measured():
    nodes, edges = tree()
    nodes[2] = LayoutNode(id='Q2', width=200)
    assert compute_layout(nodes, edges) is None

    nodes[2] = LayoutNode(id='Q2', width=200, height=100)
    positions = compute_layout(nodes, edges)
    assert positions is not None
    assert set(positions) == {'A1', 'Q1', 'Q2', 'A2'}


def test_layout_is_deterministic():
    nodes, edges = tree()
    assert compute_layout(nodes, edges) == compute_layout(nodes, edges)


def test_layers_flow_down_without_overlap():
    nodes, edges = tree()
    positions = compute_layout(nodes, edges)
    sizes = {n.id: (n.width, n.height) for n in nodes}

    assert positions['A1'].y == 50
    assert positions['Q1'].y == positions['Q2'].y == 50 + 300 + 150
    assert positions['A2'].y == 50 + 300 + 150 + 100 + 150
    assert positions['Q1'].x < positions['Q2'].x

    ids = list(positions)
    for i, a in enumerate(ids):
        for b in ids[i + 1 :]:
            assert not overlaps(positions[a], sizes[a], positions[b], sizes[b])


def test_child_is_centered_under_single_parent():
    nodes, edges = tree()
    positions = compute_layout(nodes, edges)
    q1_center = positions['Q1'].x + 100
    a2_center = positions['A2'].x + 175
    assert a2_center == pytest.approx(q1_center)


@pytest.mark.parametrize(
    ('direction', 'check'),
    [
        ('UP', lambda p: p['A1'].y > p['Q1'].y > p['A2'].y),
        ('RIGHT', lambda p: p['A1'].x < p['Q1'].x < p['A2'].x),
        ('LEFT', lambda p: p['A1'].x > p['Q1'].x > p['A2'].x),
    ],
)
def test_directions(direction, check):
    nodes, edges = tree()
    assert check(compute_layout(nodes, edges, direction=direction))


def test_hints_keep_previous_order():
    nodes, edges = tree()
    hints = {'Q1': Position(x=900, y=500), 'Q2': Position(x=100, y=500)}
    positions = compute_layout(nodes, edges, hints=hints)
    assert positions['Q2'].x < positions['Q1'].x


def test_custom_spacing():
    nodes, edges = tree()
    options = LayoutOptions(layer_spacing=10, node_spacing=5, padding=0)
    positions = compute_layout(nodes, edges, options=options)
    assert positions['A1'].y == 0
    assert positions['Q1'].y == 310
    assert min(p.x for p in positions.values()) == 0


def test_empty_graph():
    assert compute_layout([], []) == {}


@pytest.mark.parametrize(
    'edges',
    [
        [LayoutEdge(id='e', source='A1', target='missing')],
        [LayoutEdge(id='e', source='A1', target='A1')],
        [
            LayoutEdge(id='e1', source='A1', target='Q1'),
            LayoutEdge(id='e2', source='Q1', target='A1'),
        ],
    ],
)
def test_invalid_graphs_raise(edges):
    nodes = [LayoutNode(id='A1', width=1, height=1), LayoutNode(id='Q1', width=1, height=1)]
    with pytest.raises(LayoutError):
        compute_layout(nodes, edges)


def test_unknown_direction_raises():
    nodes, edges = tree()
    with pytest.raises(LayoutError):
        compute_layout(nodes, edges, direction='SIDEWAYS')


def test_engine_applies_latest_request_only(graph, monkeypatch):
    async def scenario():
        engine = LayoutEngine()
        release = {1: asyncio.Event(), 2: asyncio.Event()}
        calls = []

        async def fake_to_thread(func, *args):
            calls.append(len(calls) + 1)
            await release[len(calls)].wait()
            return func(*args)

        monkeypatch.setattr('learning_map.layout.asyncio.to_thread', fake_to_thread)

        nodes = [
            LayoutNode(id='A1', width=100, height=100),
            LayoutNode(id='Q1', width=50, height=50),
            LayoutNode(id='Q2', width=50, height=50),
        ]
        edges = [
            LayoutEdge(id='A1-Q1', source='A1', target='Q1'),
            LayoutEdge(id='A1-Q2', source='A1', target='Q2'),
        ]
        first = asyncio.create_task(engine.request_layout(graph, nodes, edges))
        await asyncio.sleep(0)
        second = asyncio.create_task(engine.request_layout(graph, nodes, edges, 'RIGHT'))
        await asyncio.sleep(0)

        release[2].set()
        assert await second == LayoutOutcome.ACCEPTED
        accepted = graph.get_question('Q1').position

        release[1].set()
        assert await first == LayoutOutcome.STALE
        assert graph.get_question('Q1').position == accepted
        assert not graph.is_dirty

    asyncio.run(scenario())


def test_engine_discards_failure_of_superseded_request(graph, monkeypatch):
    async def scenario():
        engine = LayoutEngine()
        release = {1: asyncio.Event(), 2: asyncio.Event()}
        calls = []

        async def fake_to_thread(func, *args):
            calls.append(len(calls) + 1)
            await release[len(calls)].wait()
            return func(*args)

        monkeypatch.setattr('learning_map.layout.asyncio.to_thread', fake_to_thread)

        nodes = [LayoutNode(id='A1', width=100, height=100)]
        self_loop = [LayoutEdge(id='e', source='A1', target='A1')]
        first = asyncio.create_task(engine.request_layout(graph, nodes, self_loop))
        await asyncio.sleep(0)
        second = asyncio.create_task(engine.request_layout(graph, nodes, []))
        await asyncio.sleep(0)

        release[2].set()
        assert await second == LayoutOutcome.ACCEPTED
        release[1].set()
        assert await first == LayoutOutcome.STALE
        assert graph.get_article('A1').position == Position(x=50, y=50)

    asyncio.run(scenario())


def test_engine_reports_incomplete(graph):
    async def scenario():
        nodes = [LayoutNode(id='A1'), LayoutNode(id='Q1', width=1, height=1)]
        outcome = await LayoutEngine().request_layout(graph, nodes, [])
        assert outcome == LayoutOutcome.INCOMPLETE
        assert graph.get_article('A1').position is None

    asyncio.run(scenario())


def test_engine_failure_keeps_positions(graph):
    async def scenario():
        graph.apply_positions({'A1': Position(x=5, y=5)})
        nodes = [LayoutNode(id='A1', width=1, height=1)]
        edges = [LayoutEdge(id='e', source='A1', target='A1')]
        with pytest.raises(LayoutError):
            await LayoutEngine().request_layout(graph, nodes, edges)
        assert graph.get_article('A1').position == Position(x=5, y=5)

    asyncio.run(scenario())
