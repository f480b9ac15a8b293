import asyncio

from conftest import RecordingStore, make_snapshot, settle
from learning_map.contracts import InitialRequest
from learning_map.layout import LayoutOutcome
from learning_map.models import NodeMeasurement, RendererEvent
from learning_map.session import LearningMapSession
from learning_map.store import InMemoryStore


def test_first_visit_creates_and_generates_root(generator):
    async def scenario():
        store = RecordingStore()
        session = await LearningMapSession.open(
            store, generator, 'chemistry', module_title='Atoms', module_description='Basics'
        )
        root = session.graph.get_root_article()
        assert root is not None and root.content == ''
        assert store.saved[root.id].is_root
        assert session.visualization().nodes[0].is_loading

        await settle()
        assert generator.requests == [
            InitialRequest(subject='chemistry', module_title='Atoms', module_description='Basics')
        ]
        generator.resolve(0, content='Intro')
        await session.navigation.wait_idle()

        node = session.visualization().nodes[0]
        assert not node.is_loading and node.is_active
        assert store.saved[root.id].content == 'Intro'

    asyncio.run(scenario())


def test_existing_map_is_hydrated_without_generation(generator):
    async def scenario():
        session = await LearningMapSession.open(
            RecordingStore(make_snapshot()), generator, 'chemistry'
        )
        assert session.graph.node_ids() == ['A1', 'Q1', 'Q2']
        await settle()
        assert generator.requests == []

    asyncio.run(scenario())


def test_interrupted_root_generation_resumes_on_open(generator):
    async def scenario():
        store = RecordingStore(make_snapshot(root_content=''))
        session = await LearningMapSession.open(store, generator, 'chemistry')
        assert session.navigation.is_generating('A1')

        await settle()
        assert generator.requests == [InitialRequest(subject='chemistry')]
        generator.resolve(0, content='Intro')
        await session.navigation.wait_idle()
        assert session.graph.get_article('A1').content == 'Intro'

    asyncio.run(scenario())


def test_renderers_receive_every_change(generator):
    async def scenario():
        session = await LearningMapSession.open(
            RecordingStore(make_snapshot()), generator, 'chemistry'
        )
        frames = []
        session.subscribe(frames.append)

        session.handle_event(RendererEvent(type='selectQuestion', id='Q1'))
        assert frames, 'placeholder creation is pushed to renderers'
        last = {n.id: n for n in frames[-1].nodes}
        active = session.navigation.active_article_id
        assert last[active].is_loading and last[active].is_active

        count = len(frames)
        session.handle_event(RendererEvent(type='selectArticle', id='A1'))
        assert len(frames) == count + 1

        session.handle_event(RendererEvent(type='selectArticle', id='A1'))
        assert len(frames) == count + 1

        await settle()
        generator.resolve(0)
        await session.navigation.wait_idle()
        assert not any(n.is_loading for n in frames[-1].nodes)

        measurements = [
            NodeMeasurement(id=n.id, width=200, height=100)
            for n in session.visualization().nodes
        ]
        before = len(frames)
        assert await session.relayout(measurements) == LayoutOutcome.ACCEPTED
        assert len(frames) == before + 1
        assert all(n.position is not None for n in frames[-1].nodes)

    asyncio.run(scenario())


def test_relayout_waits_for_measurements(generator):
    async def scenario():
        session = await LearningMapSession.open(
            RecordingStore(make_snapshot()), generator, 'chemistry'
        )
        outcome = await session.relayout([NodeMeasurement(id='A1', width=10, height=10)])
        assert outcome == LayoutOutcome.INCOMPLETE

    asyncio.run(scenario())


def test_in_memory_store_round_trip(generator):
    async def scenario():
        store = InMemoryStore()
        session = await LearningMapSession.open(store, generator, 'physics')
        await settle()
        generator.resolve(0, content='Intro')
        await session.navigation.wait_idle()
        await session.navigation.surface_questions(session.graph.get_root_article().id)

        reloaded = await store.load('physics')
        assert reloaded.learning_map.id == session.graph.learning_map.id
        assert [a.content for a in reloaded.articles] == ['Intro']
        assert reloaded.questions == []

        other = await store.load('biology')
        assert other.learning_map.id != reloaded.learning_map.id
        assert other.articles == []

    asyncio.run(scenario())
