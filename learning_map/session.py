import logging
from collections.abc import Callable, Iterable

from learning_map.contracts import ContentGenerator, RendererCallback, Store
from learning_map.graph import GraphModel
from learning_map.layout import Direction, LayoutEngine, LayoutOutcome
from learning_map.models import (
    Article,
    GraphMutation,
    LearningMapSnapshot,
    NodeMeasurement,
    RendererEvent,
    Visualization,
)
from learning_map.navigation import NavigationController, new_id
from learning_map.projection import VisualizationProjector, layout_inputs

logger = logging.getLogger(__name__)


class LearningMapSession:
    """
    One learner's view of a subject's learning map.

    Wires the store, graph, navigation, layout and projection together and pushes a
    fresh visualization to renderer subscribers after every accepted change.
    """

    def __init__(
        self,
        graph: GraphModel,
        navigation: NavigationController,
        layout: LayoutEngine | None = None,
        projector: VisualizationProjector | None = None,
    ):
        self.graph: GraphModel = graph
        self.navigation: NavigationController = navigation
        self.layout: LayoutEngine = layout or LayoutEngine()
        self.projector: VisualizationProjector = projector or VisualizationProjector()
        self._renderers: list[RendererCallback] = []
        self._unsubscribe: Callable[[], None] = graph.subscribe(self._on_mutation)

    @classmethod
    async def open(
        cls,
        store: Store,
        generator: ContentGenerator,
        subject_id: str,
        module_title: str | None = None,
        module_description: str | None = None,
        layout_direction: Direction = 'DOWN',
    ) -> 'LearningMapSession':
        """
        Load the subject's map, creating its root article on first visit.

        The root article starts as a placeholder; its lesson is generated in the background.
        """
        snapshot = await store.load(subject_id)
        needs_root = not snapshot.articles
        if needs_root:
            root = Article(id=new_id(), learning_map_id=snapshot.learning_map.id, is_root=True)
            await store.save(root)
            snapshot = LearningMapSnapshot(
                learning_map=snapshot.learning_map.model_copy(
                    update={'article_ids': [root.id]}
                ),
                articles=[root],
                questions=[],
            )
            logger.info('Created root article %s for subject %s', root.id, subject_id)

        graph = GraphModel()
        graph.initialize(snapshot)
        navigation = NavigationController(graph, generator, subject_id, store=store)
        session = cls(graph, navigation, layout=LayoutEngine(direction=layout_direction))
        root = graph.get_root_article()
        # also resumes a first generation interrupted before it produced content
        if root.content == '' and root.error is None:
            navigation.generate_root(module_title, module_description)
        return session

    def subscribe(self, callback: RendererCallback) -> Callable[[], None]:
        self._renderers.append(callback)

        def _unsubscribe():
            if callback in self._renderers:
                self._renderers.remove(callback)

        return _unsubscribe

    def close(self) -> None:
        self._unsubscribe()
        self._renderers.clear()

    def visualization(self) -> Visualization:
        return self.projector.project(
            self.graph,
            active_id=self.navigation.active_article_id,
            loading_ids=self.navigation.loading_ids(),
        )

    def _notify(self) -> None:
        if not self._renderers:
            return
        visualization = self.visualization()
        for callback in list(self._renderers):
            callback(visualization)

    def _on_mutation(self, mutation: GraphMutation) -> None:
        logger.debug('Graph mutation %s %s', mutation.kind, mutation.entity_id or '')
        self._notify()

    def handle_event(self, event: RendererEvent) -> Visualization:
        previous = self.navigation.active_article_id
        self.navigation.handle_event(event)
        # selection alone does not mutate the graph
        if self.navigation.active_article_id != previous:
            self._notify()
        return self.visualization()

    def ask_question(self, article_id: str, text: str) -> Visualization:
        self.navigation.ask_question(article_id, text)
        return self.visualization()

    async def relayout(
        self, measurements: Iterable[NodeMeasurement], direction: Direction | None = None
    ) -> LayoutOutcome:
        """Lay out the current graph from rendered node sizes"""
        nodes, edges = layout_inputs(self.visualization(), measurements)
        return await self.layout.request_layout(self.graph, nodes, edges, direction)
