from collections.abc import Collection, Iterable, Mapping

from learning_map.graph import GraphModel, iter_question_edges
from learning_map.models import (
    LayoutEdge,
    LayoutNode,
    NodeMeasurement,
    Position,
    VisualEdge,
    Visualization,
    VisualNode,
)


class VisualizationProjector:
    """
    Derives the renderable node and edge list from the graph.

    Node order follows graph insertion order, so unchanged id sets always project
    in the same order.
    """

    def __init__(self, label_length: int = 150):
        self._label_length: int = label_length

    def _article_label(self, summary: str, content: str) -> str:
        label = summary or content
        if len(label) > self._label_length:
            return label[: self._label_length].rstrip() + '...'
        return label

    def project(
        self,
        graph: GraphModel,
        positions: Mapping[str, Position] | None = None,
        active_id: str | None = None,
        loading_ids: Collection[str] = (),
    ) -> Visualization:
        """
        Build the visualization.

        Positions passed explicitly take precedence over the ones stored on the entities.
        """
        positions = positions or {}
        loading = set(loading_ids)
        nodes: list[VisualNode] = []

        for node_id in graph.node_ids():
            article = graph.get_article(node_id)
            if article is not None:
                nodes.append(
                    VisualNode(
                        id=article.id,
                        type='article',
                        position=positions.get(article.id, article.position),
                        label=self._article_label(article.summary, article.content),
                        is_root=article.is_root,
                        is_active=article.id == active_id,
                        is_loading=article.id in loading,
                        has_error=article.error is not None,
                        takeaways=list(article.takeaways),
                    )
                )
                continue

            question = graph.get_question(node_id)
            if question is not None:
                nodes.append(
                    VisualNode(
                        id=question.id,
                        type='question',
                        position=positions.get(question.id, question.position),
                        label=question.text,
                        is_loading=question.id in loading,
                    )
                )

        edges = [
            VisualEdge(id=edge_id, source=source, target=target)
            for edge_id, source, target in iter_question_edges(graph.questions())
        ]
        return Visualization(nodes=nodes, edges=edges)


def layout_inputs(
    visualization: Visualization, measurements: Iterable[NodeMeasurement]
) -> tuple[list[LayoutNode], list[LayoutEdge]]:
    """Pair visual nodes with their rendered sizes for the layout engine"""
    sizes = {m.id: m for m in measurements}
    nodes = []
    for node in visualization.nodes:
        measured = sizes.get(node.id)
        nodes.append(
            LayoutNode(
                id=node.id,
                width=measured.width if measured else None,
                height=measured.height if measured else None,
            )
        )
    edges = [
        LayoutEdge(id=edge.id, source=edge.source, target=edge.target)
        for edge in visualization.edges
    ]
    return nodes, edges
